"""
Risk Models

Derived, never stored: per-position lot metrics and PnL, and the aggregate
snapshot across an owner's active positions.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict


@dataclass(frozen=True)
class LotMetrics:
    position_value: Decimal
    margin_required: Decimal
    lot_size: Decimal


@dataclass(frozen=True)
class PnL:
    profit: Decimal
    profit_percentage: Decimal


@dataclass(frozen=True)
class AggregateRiskSnapshot:
    """Margin picture of an owner's active positions."""
    total_capital: Decimal
    total_margin_used: Decimal
    total_unrealized_pnl: Decimal
    free_margin: Decimal
    margin_level: Decimal
    open_positions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_capital": float(self.total_capital),
            "total_margin_used": float(self.total_margin_used),
            "total_unrealized_pnl": float(self.total_unrealized_pnl),
            "free_margin": float(self.free_margin),
            "margin_level": float(self.margin_level),
            "open_positions": self.open_positions,
        }
