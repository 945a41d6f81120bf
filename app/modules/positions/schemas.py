"""
Position Management Schemas

Pydantic schemas for position API requests and responses.
"""

from typing import Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from app.domain.models.position import DurationUnit, Position, PositionDirection


# ==================== REQUEST SCHEMAS ====================

class OpenPositionRequest(BaseModel):
    """Open position request"""
    instrument: str = Field(..., min_length=1, examples=["BTCUSDT"])
    direction: PositionDirection
    amount: Decimal = Field(..., description="Capital committed, debited at open")
    stake: Decimal = Field(..., description="Base of the profit calculation")
    leverage: int = 100
    capital_fraction: Decimal = Decimal("1")
    lot_size: Decimal = Decimal("0.01")
    duration_value: int = 1
    duration_unit: DurationUnit = DurationUnit.HOUR
    open_price: Optional[Decimal] = Field(
        default=None,
        description="Defaults to the current feed price",
    )
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    market_color: Optional[str] = None


# ==================== RESPONSE SCHEMAS ====================

class DurationResponse(BaseModel):
    value: int
    unit: DurationUnit


class PositionResponse(BaseModel):
    """Position response"""
    id: str
    owner_id: str
    instrument: str
    direction: PositionDirection
    status: str
    open_price: float
    current_price: float
    stake: float
    amount: float
    leverage: int
    capital_fraction: float
    lot_size: float
    margin_required: float
    position_value: float
    profit: float
    profit_percentage: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    market_color: Optional[str] = None
    open_time: datetime
    expires_at: datetime
    duration: DurationResponse
    close_time: Optional[datetime] = None
    close_price: Optional[float] = None
    close_reason: Optional[str] = None

    @classmethod
    def from_position(cls, position: Position) -> "PositionResponse":
        return cls(
            id=position.id,
            owner_id=position.owner_id,
            instrument=position.instrument,
            direction=position.direction,
            status=position.status.value,
            open_price=float(position.open_price),
            current_price=float(position.current_price),
            stake=float(position.stake),
            amount=float(position.amount),
            leverage=position.leverage,
            capital_fraction=float(position.capital_fraction),
            lot_size=float(position.lot_size),
            margin_required=float(position.margin_required),
            position_value=float(position.position_value),
            profit=float(position.profit),
            profit_percentage=float(position.profit_percentage),
            stop_loss=float(position.stop_loss) if position.stop_loss is not None else None,
            take_profit=float(position.take_profit) if position.take_profit is not None else None,
            market_color=position.market_color,
            open_time=position.open_time,
            expires_at=position.expires_at,
            duration=DurationResponse(value=position.duration.value, unit=position.duration.unit),
            close_time=position.close_time,
            close_price=float(position.close_price) if position.close_price is not None else None,
            close_reason=position.close_reason.value if position.close_reason else None,
        )


def position_payload(position: Position) -> dict:
    """JSON-ready dict for the response envelope."""
    return PositionResponse.from_position(position).model_dump(mode="json")
