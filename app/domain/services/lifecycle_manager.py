"""
Position Lifecycle Manager

Owns the canonical in-memory registry of active positions: opens, reprices,
expires, closes and liquidates them, and reconciles with the PositionStore.

State machine:
    OPEN -> EXPIRED (time-triggered, local gate) -> CLOSED
    OPEN -> CLOSED
    OPEN -> LIQUIDATED

All local recomputation is synchronous; the only awaits cross the store
boundary. A position whose close is in flight is skipped by ticks and by
refreshes until the close resolves.
"""

import copy
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

from app.domain.instruments import InstrumentClass, normalize_symbol
from app.domain.leverage import LeverageLimits
from app.domain.models.modification import OwnerScope
from app.domain.models.position import (
    ACTIVE_STATUSES,
    CloseReason,
    DurationUnit,
    Position,
    PositionDirection,
    PositionDuration,
    PositionStatus,
)
from app.domain.models.quote import PriceQuote
from app.domain.models.risk import AggregateRiskSnapshot
from app.domain.services import margin_calculator as calc
from app.repositories.position_store import PositionStore
from app.shared.exceptions import (
    AppException,
    InsufficientFundsError,
    InsufficientMarginError,
    PositionConflictError,
    PositionNotFoundError,
    ValidationError,
)
from app.shared.models import DomainModel, OperationResult
from app.utils.logger import get_logger

logger = get_logger(__name__)

QuoteLookup = Callable[[str], Optional[PriceQuote]]
SymbolsListener = Callable[[Set[str]], None]

# Recomputed from price and sizing inputs, never copied from a stored snapshot
DERIVED_ATTRIBUTES = ("position_value", "margin_required", "profit", "profit_percentage")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OpenPositionParams(DomainModel):
    """Caller-supplied values for a new position."""

    owner_id: str
    instrument: str
    direction: PositionDirection
    amount: Decimal
    stake: Decimal
    leverage: int = 1
    capital_fraction: Decimal = Decimal("1")
    lot_size: Decimal = Decimal("0.01")
    duration_value: int = 1
    duration_unit: DurationUnit = DurationUnit.HOUR
    open_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    market_color: Optional[str] = None


class _RefreshWindow:
    """Ids opened or removed while a refresh waits on the store."""

    def __init__(self):
        self.opened: Set[str] = set()
        self.removed: Set[str] = set()


class PositionLifecycleManager:
    """
    Position Lifecycle Manager

    Usage:
        manager = PositionLifecycleManager(store, quote_lookup=feed.latest_quote)
        await manager.refresh()

        result = await manager.open(params)
        if result.success:
            position_id = result.data

        manager.apply_quote("BTCUSDT", Decimal("44000"), timestamp)
        await manager.close(position_id)
    """

    def __init__(
        self,
        store: PositionStore,
        quote_lookup: Optional[QuoteLookup] = None,
        clock: Optional[Callable[[], datetime]] = None,
        min_leverage: int = 1,
        max_leverage: int = 1000,
        leverage_caps: Optional[Mapping[InstrumentClass, int]] = None,
    ):
        self._store = store
        self._quote_lookup = quote_lookup
        self._clock = clock or _utcnow
        self.leverage_limits = LeverageLimits(min_leverage, max_leverage, leverage_caps)

        self._positions: Dict[str, Position] = {}
        self._closing: Set[str] = set()
        # One entry per refresh awaiting the store: ids opened / removed meanwhile
        self._refresh_windows: List[_RefreshWindow] = []
        self._last_quote_at: Dict[str, datetime] = {}
        self._balances: Dict[str, Decimal] = {}
        self._triggers: Dict[str, CloseReason] = {}
        self._listeners: List[SymbolsListener] = []
        self._watched_symbols: Set[str] = set()

    @property
    def min_leverage(self) -> int:
        return self.leverage_limits.min_leverage

    @property
    def max_leverage(self) -> int:
        return self.leverage_limits.max_leverage

    # ==================== READS ====================

    def get(self, position_id: str) -> Optional[Position]:
        """Copy of an active position, or None."""
        position = self._positions.get(position_id)
        return position.model_copy(deep=True) if position else None

    def list_positions(
        self,
        owner_id: Optional[str] = None,
        scope: Optional[OwnerScope] = None,
    ) -> List[Position]:
        """Copies of active positions, newest first."""
        result = []
        for position in self._positions.values():
            if owner_id is not None and position.owner_id != owner_id:
                continue
            if scope is not None and not scope.allows(position.owner_id):
                continue
            result.append(position.model_copy(deep=True))
        result.sort(key=lambda p: p.open_time, reverse=True)
        return result

    def expired_positions(self) -> List[Position]:
        """Copies of frozen positions not already being closed."""
        return [
            p.model_copy(deep=True)
            for p in self._positions.values()
            if p.status == PositionStatus.EXPIRED and p.id not in self._closing
        ]

    def is_closing(self, position_id: str) -> bool:
        return position_id in self._closing

    def cached_balance(self, owner_id: str) -> Optional[Decimal]:
        return self._balances.get(owner_id)

    @property
    def active_symbols(self) -> Set[str]:
        """Symbols with at least one position that still moves with the market."""
        return {
            p.instrument
            for p in self._positions.values()
            if p.status == PositionStatus.OPEN
        }

    # ==================== LISTENERS ====================

    def add_symbols_listener(self, listener: SymbolsListener) -> None:
        """Called with the new symbol set whenever it changes."""
        self._listeners.append(listener)

    def _notify_symbols(self) -> None:
        symbols = self.active_symbols
        if symbols == self._watched_symbols:
            return
        self._watched_symbols = symbols
        for listener in list(self._listeners):
            try:
                listener(set(symbols))
            except Exception as e:
                logger.error(f"Symbols listener failed: {e}", exc_info=True)

    # ==================== REFRESH ====================

    async def refresh(self, scope: Optional[OwnerScope] = None) -> OperationResult:
        """
        Load active positions from the store.

        Positions whose duration has elapsed are marked EXPIRED locally.
        Positions already tracked keep their local (repriced) state;
        positions gone from the store are dropped.
        """
        scope = scope or OwnerScope.everyone()

        window = _RefreshWindow()
        self._refresh_windows.append(window)
        try:
            loaded = await self._store.list_positions(scope, list(ACTIVE_STATUSES))
        except AppException as e:
            logger.error(f"Failed to refresh positions: {e.message}")
            return OperationResult.from_exception(e)
        finally:
            self._refresh_windows.remove(window)

        now = self._clock()
        loaded_ids = {p.id for p in loaded}

        for position_id in list(self._positions):
            position = self._positions[position_id]
            if position_id in self._closing or position_id in loaded_ids:
                continue
            if position_id in window.opened:
                continue
            if scope.allows(position.owner_id):
                del self._positions[position_id]

        for position in loaded:
            if position.id in self._positions or position.id in window.removed:
                continue
            position = position.model_copy(deep=True)
            if position.status == PositionStatus.OPEN and position.is_expired(now):
                position.status = PositionStatus.EXPIRED
            self._positions[position.id] = position

        self._notify_symbols()
        logger.info(f"Refreshed {len(loaded)} active positions")
        return OperationResult.ok(f"Loaded {len(loaded)} positions", data=len(loaded))

    async def refresh_balance(self, owner_id: str) -> Optional[Decimal]:
        """Reload an owner's balance into the cache."""
        try:
            balance = await self._store.get_balance(owner_id)
        except AppException as e:
            logger.warning(f"Balance refresh failed for {owner_id}: {e.message}")
            return self._balances.get(owner_id)
        self._balances[owner_id] = balance
        return balance

    # ==================== OPEN ====================

    def _validate_open(self, params: OpenPositionParams, open_price: Optional[Decimal]) -> None:
        if params.amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        if params.stake <= 0:
            raise ValidationError("Stake must be greater than zero")
        if open_price is None:
            raise ValidationError(f"No price available for {params.instrument}")
        if open_price <= 0:
            raise ValidationError("Open price must be greater than zero")
        if params.duration_value <= 0:
            raise ValidationError("Duration must be greater than zero")
        if params.lot_size <= 0:
            raise ValidationError("Lot size must be greater than zero")
        if not (0 < params.capital_fraction <= 1):
            raise ValidationError("Capital fraction must be in (0, 1]")
        self.leverage_limits.check(params.instrument, params.leverage)

        sign = params.direction.sign
        if params.stop_loss is not None and (params.stop_loss - open_price) * sign >= 0:
            raise ValidationError(
                "Stop loss must be below the open price for long positions "
                "and above it for short positions"
            )
        if params.take_profit is not None and (params.take_profit - open_price) * sign <= 0:
            raise ValidationError(
                "Take profit must be above the open price for long positions "
                "and below it for short positions"
            )

    async def open(self, params: OpenPositionParams) -> OperationResult:
        """
        Open a position.

        On success ``data`` is the new position id. On rejection nothing
        local or remote is mutated.
        """
        instrument = normalize_symbol(params.instrument)
        open_price = params.open_price
        if open_price is None:
            quote = self._lookup_quote(instrument)
            open_price = quote.price if quote else None

        try:
            self._validate_open(params, open_price)

            position = Position(
                owner_id=params.owner_id,
                instrument=instrument,
                direction=params.direction,
                open_price=open_price,
                current_price=open_price,
                stake=params.stake,
                amount=params.amount,
                leverage=params.leverage,
                capital_fraction=params.capital_fraction,
                lot_size=params.lot_size,
                duration=PositionDuration(value=params.duration_value, unit=params.duration_unit),
                open_time=self._clock(),
                stop_loss=params.stop_loss,
                take_profit=params.take_profit,
                market_color=params.market_color,
            )
            self._reprice(position, open_price)

            balance = await self._store.get_balance(params.owner_id)
            if params.amount > balance:
                raise InsufficientFundsError(
                    f"Insufficient funds: balance {balance}, required {params.amount}"
                )
            if not calc.margin_fits(position.margin_required, params.capital_fraction, balance):
                raise InsufficientMarginError(
                    f"Required margin {position.margin_required:.4f} exceeds "
                    f"{params.capital_fraction} of capital {balance}"
                )
        except AppException as e:
            logger.warning(f"Open rejected for {params.owner_id} on {instrument}: {e.message}")
            return OperationResult.from_exception(e)

        result = await self._store.open_position(position)
        if not result.success:
            logger.warning(f"Store rejected open for {params.owner_id}: {result.message}")
            return result

        stored = result.data if isinstance(result.data, Position) else position
        stored = stored.model_copy(deep=True)

        quote = self._lookup_quote(instrument)
        if quote is not None:
            self._reprice(stored, quote.price)

        self._positions[stored.id] = stored
        for window in self._refresh_windows:
            window.opened.add(stored.id)
        self._balances[params.owner_id] = balance - params.amount
        self._notify_symbols()

        logger.info(
            f"Position {stored.id} opened: {stored.direction.value} {instrument} "
            f"@ {open_price} x{stored.leverage} for {params.owner_id}"
        )
        return OperationResult.ok("Position opened", data=stored.id, status_code=201)

    def _lookup_quote(self, symbol: str) -> Optional[PriceQuote]:
        if self._quote_lookup is None:
            return None
        return self._quote_lookup(symbol)

    # ==================== TICKS ====================

    def _reprice(self, position: Position, price: Decimal) -> None:
        metrics = calc.compute_lot_metrics(position, price)
        pnl = calc.compute_unrealized_pnl(position, price)
        position.current_price = calc.to_decimal(price)
        position.position_value = metrics.position_value
        position.margin_required = metrics.margin_required
        position.profit = pnl.profit
        position.profit_percentage = pnl.profit_percentage
        position.updated_at = self._clock()

    def apply_quote(
        self,
        symbol: str,
        price: Decimal,
        timestamp: Optional[datetime] = None,
    ) -> List[str]:
        """
        Reprice every open, unexpired, not-closing position on ``symbol``.

        Quotes older than the last applied one for the symbol are dropped.
        Returns the ids of repriced positions.
        """
        symbol = normalize_symbol(symbol)
        price = calc.to_decimal(price)
        timestamp = timestamp or self._clock()

        last = self._last_quote_at.get(symbol)
        if last is not None and timestamp < last:
            logger.debug(f"Dropping stale quote for {symbol}: {timestamp} < {last}")
            return []
        self._last_quote_at[symbol] = timestamp

        now = self._clock()
        updated = []
        expired = False

        for position in self._positions.values():
            if position.instrument != symbol:
                continue
            if position.id in self._closing or position.status != PositionStatus.OPEN:
                continue
            if position.is_expired(now):
                position.status = PositionStatus.EXPIRED
                expired = True
                logger.info(f"Position {position.id} expired at {position.current_price}")
                continue

            self._reprice(position, price)
            updated.append(position.id)

            reason = calc.check_protective_levels(position, price)
            if reason is not None:
                self._triggers[position.id] = reason

        if expired:
            self._notify_symbols()
        return updated

    def apply_price_quote(self, quote: PriceQuote) -> List[str]:
        return self.apply_quote(quote.symbol, quote.price, quote.timestamp)

    def drain_triggers(self) -> Dict[str, CloseReason]:
        """Pop protective-level hits recorded since the last call."""
        triggers = {
            pid: reason
            for pid, reason in self._triggers.items()
            if pid in self._positions and pid not in self._closing
        }
        self._triggers.clear()
        return triggers

    def expire_due(self, now: Optional[datetime] = None) -> List[str]:
        """Mark time-elapsed open positions EXPIRED."""
        now = now or self._clock()
        expired = []
        for position in self._positions.values():
            if position.status == PositionStatus.OPEN and position.is_expired(now):
                position.status = PositionStatus.EXPIRED
                expired.append(position.id)

        if expired:
            logger.info(f"Expired {len(expired)} positions")
            self._notify_symbols()
        return expired

    # ==================== CLOSE ====================

    async def close(
        self,
        position_id: str,
        reason: CloseReason = CloseReason.MANUAL,
        scope: Optional[OwnerScope] = None,
        status: PositionStatus = PositionStatus.CLOSED,
    ) -> OperationResult:
        """
        Finalize a position with its last known price and profit.

        Success removes it and refreshes the owner balance; failure leaves it
        active; a conflict (already terminal) drops it locally.
        """
        position = self._positions.get(position_id)
        if position is None or (scope is not None and not scope.allows(position.owner_id)):
            return OperationResult.from_exception(PositionNotFoundError())
        if position_id in self._closing:
            return OperationResult.from_exception(
                PositionConflictError("Close already in progress")
            )

        self._closing.add(position_id)
        close_price = position.current_price
        profit = position.profit
        amount = position.amount
        owner_id = position.owner_id

        try:
            result = await self._store.close_position(
                position_id,
                close_price=close_price,
                profit=profit,
                amount=amount,
                status=status,
                reason=reason,
            )
        except AppException as e:
            result = OperationResult.from_exception(e)
        finally:
            self._closing.discard(position_id)

        if result.success:
            self._remove(position_id)
            new_balance = (result.data or {}).get("new_balance")
            if new_balance is not None:
                self._balances[owner_id] = calc.to_decimal(new_balance)
            else:
                await self.refresh_balance(owner_id)
            logger.info(
                f"Position {position_id} {status.value} ({reason.value}) "
                f"@ {close_price}, profit {profit:.2f}"
            )
            return OperationResult.ok(
                "Position closed" if status == PositionStatus.CLOSED else "Position liquidated",
                data={
                    "position_id": position_id,
                    "status": status.value,
                    "close_price": close_price,
                    "profit": profit,
                    "new_balance": self._balances.get(owner_id),
                },
            )

        if result.code == PositionConflictError().code:
            logger.warning(f"Position {position_id} already terminal in store, dropping")
            self._remove(position_id)
        else:
            logger.warning(f"Close failed for {position_id}: {result.message}")
        return result

    async def liquidate(self, position_id: str, scope: Optional[OwnerScope] = None) -> OperationResult:
        """Force-close a position with terminal status LIQUIDATED."""
        return await self.close(
            position_id,
            reason=CloseReason.LIQUIDATION,
            scope=scope,
            status=PositionStatus.LIQUIDATED,
        )

    def _remove(self, position_id: str) -> None:
        self._positions.pop(position_id, None)
        self._triggers.pop(position_id, None)
        for window in self._refresh_windows:
            window.removed.add(position_id)
        self._notify_symbols()

    # ==================== RISK ====================

    async def risk_snapshot(self, owner_id: str) -> AggregateRiskSnapshot:
        """Aggregate over the owner's active positions using the cached balance."""
        balance = self._balances.get(owner_id)
        if balance is None:
            balance = await self.refresh_balance(owner_id)
        positions = [p for p in self._positions.values() if p.owner_id == owner_id]
        return calc.aggregate(positions, balance or Decimal("0"))

    # ==================== ADMIN WRITES ====================

    def apply_modification(self, position: Position, fields: Iterable[str]) -> None:
        """
        Merge ``fields`` of a successfully written position into the local copy.

        The local copy keeps its live price unless ``current_price`` is one
        of the fields; derived metrics are recomputed at that price. A
        position no longer tracked locally (closed meanwhile) stays gone.
        """
        local = self._positions.get(position.id)
        if local is None or position.id in self._closing:
            return
        if not position.is_active():
            self._remove(position.id)
            return

        fields = set(fields) - set(DERIVED_ATTRIBUTES)
        for name in fields:
            setattr(local, name, copy.deepcopy(getattr(position, name)))
        self._reprice(local, local.current_price)

        if local.status == PositionStatus.OPEN and local.is_expired(self._clock()):
            local.status = PositionStatus.EXPIRED
        self._notify_symbols()
