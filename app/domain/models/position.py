"""
Position Domain Model

Pure Pydantic domain model for leveraged practice positions.
No database dependencies - business logic only.
"""

from typing import Optional
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from pydantic import Field, field_validator

from app.domain.instruments import normalize_symbol
from app.shared.models import DomainModel, new_object_id


# ==================== ENUMS ====================

class PositionStatus(str, Enum):
    """Position status lifecycle"""
    OPEN = "open"
    EXPIRED = "expired"
    CLOSED = "closed"
    LIQUIDATED = "liquidated"


ACTIVE_STATUSES = (PositionStatus.OPEN, PositionStatus.EXPIRED)
TERMINAL_STATUSES = (PositionStatus.CLOSED, PositionStatus.LIQUIDATED)


class PositionDirection(str, Enum):
    """Position direction"""
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is PositionDirection.LONG else -1


class DurationUnit(str, Enum):
    """Unit of a position's lifetime"""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    def to_timedelta(self, value: int) -> timedelta:
        if self is DurationUnit.MINUTE:
            return timedelta(minutes=value)
        if self is DurationUnit.HOUR:
            return timedelta(hours=value)
        return timedelta(days=value)


class CloseReason(str, Enum):
    """Why a position left the active set"""
    MANUAL = "manual"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    EXPIRED = "expired"
    LIQUIDATION = "liquidation"


# ==================== VALUE OBJECTS ====================

class PositionDuration(DomainModel):
    """Lifetime of a position, e.g. 30 minutes."""

    value: int = Field(..., gt=0)
    unit: DurationUnit = DurationUnit.MINUTE

    def as_timedelta(self) -> timedelta:
        return self.unit.to_timedelta(self.value)


# ==================== MAIN POSITION MODEL ====================

class Position(DomainModel):
    """
    Position Domain Model

    Pure Pydantic model representing a practice position in the domain.
    No database methods - use a PositionStore for persistence and the
    lifecycle manager for every state change.

    Usage:
        position = Position(
            owner_id="user-1",
            instrument="BTCUSDT",
            direction=PositionDirection.LONG,
            open_price=Decimal("43250"),
            current_price=Decimal("43250"),
            stake=Decimal("1000"),
            amount=Decimal("1000"),
            leverage=100,
            lot_size=Decimal("0.001"),
            duration=PositionDuration(value=30, unit=DurationUnit.MINUTE),
        )

        if position.is_expired():
            ...
    """

    # Identity
    id: str = Field(default_factory=new_object_id, alias="_id")
    owner_id: str

    # Basics
    instrument: str
    direction: PositionDirection
    status: PositionStatus = PositionStatus.OPEN

    # Prices
    open_price: Decimal
    current_price: Decimal

    # Sizing
    stake: Decimal
    amount: Decimal
    leverage: int = 1
    capital_fraction: Decimal = Decimal("1")
    lot_size: Decimal = Decimal("0.01")

    # Derived metrics (recomputed on every accepted tick)
    margin_required: Decimal = Decimal("0")
    position_value: Decimal = Decimal("0")
    profit: Decimal = Decimal("0")
    profit_percentage: Decimal = Decimal("0")

    # Risk Management
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None

    # Display
    market_color: Optional[str] = None

    # Timing
    open_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration: PositionDuration
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Exit (null while active)
    close_time: Optional[datetime] = None
    close_price: Optional[Decimal] = None
    close_reason: Optional[CloseReason] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return str(value)

    @field_validator("instrument")
    @classmethod
    def normalize_instrument(cls, value: str) -> str:
        return normalize_symbol(value)

    @field_validator("open_time", "updated_at", "close_time")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def expires_at(self) -> datetime:
        """Moment after which ticks no longer move this position."""
        return self.open_time + self.duration.as_timedelta()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the position's duration has elapsed"""
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def is_open(self) -> bool:
        """Check if position is open"""
        return self.status == PositionStatus.OPEN

    def is_active(self) -> bool:
        """Open or expired-but-not-closed positions still hold margin"""
        return self.status in ACTIVE_STATUSES

    def is_closed(self) -> bool:
        """Check if position is closed"""
        return self.status in TERMINAL_STATUSES
