"""
Margin & PnL Calculator

Pure functions over positions and prices. Decimal arithmetic, no I/O.
Invalid inputs clamp to zero instead of raising; validation happens when a
position is opened.
"""

from decimal import Decimal
from typing import Iterable, Optional, Union

from app.domain.instruments import contract_size
from app.domain.models.position import CloseReason, Position, PositionDirection
from app.domain.models.risk import AggregateRiskSnapshot, LotMetrics, PnL

ZERO = Decimal("0")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert through str so floats keep their printed value."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_lot_metrics(position: Position, current_price: Number) -> LotMetrics:
    """
    Position value and required margin at ``current_price``.

    position_value = price * contract_size(instrument) * lot_size
    margin_required = position_value / leverage (zero when leverage <= 0)
    """
    price = max(to_decimal(current_price), ZERO)
    lot_size = max(position.lot_size, ZERO)

    position_value = price * contract_size(position.instrument) * lot_size
    if position.leverage > 0:
        margin_required = position_value / Decimal(position.leverage)
    else:
        margin_required = ZERO

    return LotMetrics(
        position_value=position_value,
        margin_required=margin_required,
        lot_size=lot_size,
    )


def compute_unrealized_pnl(position: Position, current_price: Number) -> PnL:
    """
    Unrealized profit of the stake.

    profit = sign(direction) * ((price - open) / open) * stake
    """
    if position.open_price <= 0:
        return PnL(profit=ZERO, profit_percentage=ZERO)

    price = to_decimal(current_price)
    ratio = (price - position.open_price) / position.open_price
    ratio *= position.direction.sign

    return PnL(
        profit=ratio * position.stake,
        profit_percentage=ratio * HUNDRED,
    )


def aggregate(positions: Iterable[Position], total_capital: Number) -> AggregateRiskSnapshot:
    """
    Margin picture over the active (open or expired-unclosed) positions.

    free_margin = max(0, capital - used + pnl)
    margin_level = free / used * 100, or 0 with nothing used
    """
    capital = to_decimal(total_capital)
    used = ZERO
    pnl = ZERO
    count = 0

    for position in positions:
        if not position.is_active():
            continue
        used += position.margin_required
        pnl += position.profit
        count += 1

    free_margin = max(ZERO, capital - used + pnl)
    margin_level = (free_margin / used * HUNDRED) if used > 0 else ZERO

    return AggregateRiskSnapshot(
        total_capital=capital,
        total_margin_used=used,
        total_unrealized_pnl=pnl,
        free_margin=free_margin,
        margin_level=margin_level,
        open_positions=count,
    )


def margin_fits(margin_required: Decimal, capital_fraction: Decimal, total_capital: Number) -> bool:
    """True when the margin stays within the allowed share of capital."""
    return margin_required <= capital_fraction * to_decimal(total_capital)


def check_protective_levels(position: Position, price: Number) -> Optional[CloseReason]:
    """Return the protective level crossed by ``price``, if any."""
    price = to_decimal(price)

    if position.direction == PositionDirection.LONG:
        if position.stop_loss is not None and price <= position.stop_loss:
            return CloseReason.STOP_LOSS
        if position.take_profit is not None and price >= position.take_profit:
            return CloseReason.TAKE_PROFIT
    else:
        if position.stop_loss is not None and price >= position.stop_loss:
            return CloseReason.STOP_LOSS
        if position.take_profit is not None and price <= position.take_profit:
            return CloseReason.TAKE_PROFIT

    return None
