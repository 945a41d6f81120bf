"""
Quote Models

Standardized price quote and OHLC candle, whatever source produced them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict


@dataclass
class PriceQuote:
    """Standardized quote from any provider (live or synthesized)"""
    symbol: str
    price: Decimal
    change_24h: Decimal = Decimal("0")
    volume: Decimal = Decimal("0")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_live: bool = True
    source: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": float(self.price),
            "change_24h": float(self.change_24h),
            "volume": float(self.volume),
            "timestamp": self.timestamp.isoformat(),
            "is_live": self.is_live,
            "source": self.source,
        }


@dataclass
class Candle:
    """OHLCV candle"""
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal("0")
    is_live: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "open": float(self.open),
            "high": float(self.high),
            "low": float(self.low),
            "close": float(self.close),
            "volume": float(self.volume),
            "is_live": self.is_live,
        }
