"""
Domain Models

Pure domain models with no database dependencies.
"""

from app.shared.models import DomainModel
from app.domain.models.position import (
    Position,
    PositionStatus,
    PositionDirection,
    PositionDuration,
    DurationUnit,
    CloseReason,
)
from app.domain.models.quote import PriceQuote, Candle
from app.domain.models.modification import (
    ModifiableField,
    ModificationOutcome,
    Operator,
    OperatorRole,
    OwnerScope,
    PositionModification,
)
from app.domain.models.risk import AggregateRiskSnapshot, LotMetrics, PnL

__all__ = [
    "DomainModel",
    "Position",
    "PositionStatus",
    "PositionDirection",
    "PositionDuration",
    "DurationUnit",
    "CloseReason",
    "PriceQuote",
    "Candle",
    "ModifiableField",
    "ModificationOutcome",
    "Operator",
    "OperatorRole",
    "OwnerScope",
    "PositionModification",
    "AggregateRiskSnapshot",
    "LotMetrics",
    "PnL",
]
