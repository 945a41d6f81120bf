"""
Position Lifecycle Manager Tests

Open validation, repricing on quotes, expiry, closing (including closes
in flight), liquidation and store reconciliation.
"""

import asyncio
import pytest
from datetime import timedelta
from decimal import Decimal

from app.domain.instruments import InstrumentClass
from app.domain.models.modification import OwnerScope
from app.domain.models.position import (
    CloseReason,
    DurationUnit,
    PositionDirection,
    PositionStatus,
)
from app.domain.services.lifecycle_manager import OpenPositionParams, PositionLifecycleManager
from tests.fakes import T0, FakePositionStore, make_position


def btc_params(**overrides) -> OpenPositionParams:
    values = dict(
        owner_id="user-1",
        instrument="BTCUSDT",
        direction=PositionDirection.LONG,
        amount=Decimal("1000"),
        stake=Decimal("1000"),
        leverage=100,
        lot_size=Decimal("0.001"),
        duration_value=30,
        duration_unit=DurationUnit.MINUTE,
        open_price=Decimal("43250"),
    )
    values.update(overrides)
    return OpenPositionParams(**values)


class GatedStore(FakePositionStore):
    """Holds every close until ``gate`` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def close_position(self, *args, **kwargs):
        await self.gate.wait()
        return await super().close_position(*args, **kwargs)


class SnapshotGatedStore(FakePositionStore):
    """Takes the active-position snapshot, then waits for ``gate`` before returning it."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()
        self.snapshot_taken = asyncio.Event()

    async def list_positions(self, scope, statuses=None):
        snapshot = await super().list_positions(scope, statuses)
        self.snapshot_taken.set()
        await self.gate.wait()
        return snapshot


# ==================== OPEN TESTS ====================

@pytest.mark.asyncio
async def test_open_registers_position(manager, store):
    result = await manager.open(btc_params())

    assert result.success
    assert result.status_code == 201
    position = manager.get(result.data)
    assert position.instrument == "BTCUSDT"
    assert position.margin_required == Decimal("0.4325")
    assert position.position_value == Decimal("43.25")
    assert position.open_time == T0
    assert result.data in store.positions
    assert store.balances["user-1"] == Decimal("9000")
    assert manager.cached_balance("user-1") == Decimal("9000")
    assert manager.active_symbols == {"BTCUSDT"}


@pytest.mark.asyncio
async def test_open_uses_feed_price_when_none_given(manager, feed):
    await feed.get_current_prices(["BTCUSDT"])

    result = await manager.open(btc_params(open_price=None))

    assert result.success
    assert manager.get(result.data).open_price == Decimal("43250")


@pytest.mark.asyncio
async def test_open_without_any_price_is_rejected(manager, store):
    result = await manager.open(btc_params(open_price=None))

    assert not result.success
    assert result.code == "VALIDATION_ERROR"
    assert store.open_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"leverage": 0},
    {"leverage": 1001},
    {"amount": Decimal("0")},
    {"stake": Decimal("-1")},
    {"lot_size": Decimal("0")},
    {"capital_fraction": Decimal("1.5")},
    {"duration_value": 0},
    {"open_price": Decimal("0")},
    {"stop_loss": Decimal("44000")},
    {"take_profit": Decimal("42000")},
    {"direction": PositionDirection.SHORT, "stop_loss": Decimal("42000")},
])
async def test_invalid_open_is_rejected_without_side_effects(manager, store, overrides):
    result = await manager.open(btc_params(**overrides))

    assert not result.success
    assert result.code == "VALIDATION_ERROR"
    assert result.status_code == 422
    assert store.open_calls == 0
    assert manager.list_positions() == []
    assert store.balances["user-1"] == Decimal("10000")


@pytest.mark.asyncio
async def test_open_with_valid_protective_levels(manager):
    result = await manager.open(btc_params(
        stop_loss=Decimal("42000"),
        take_profit=Decimal("45000"),
    ))

    assert result.success
    position = manager.get(result.data)
    assert position.stop_loss == Decimal("42000")
    assert position.take_profit == Decimal("45000")


@pytest.mark.asyncio
async def test_open_beyond_balance_is_rejected(manager, store):
    result = await manager.open(btc_params(amount=Decimal("20000")))

    assert not result.success
    assert result.code == "INSUFFICIENT_FUNDS"
    assert store.open_calls == 0


@pytest.mark.asyncio
async def test_open_beyond_margin_is_rejected(manager, store):
    """1 BTC lot at x1 needs 43250 of margin against 10000 of capital"""
    result = await manager.open(btc_params(
        amount=Decimal("100"),
        lot_size=Decimal("1"),
        leverage=1,
    ))

    assert not result.success
    assert result.code == "INSUFFICIENT_MARGIN"
    assert store.open_calls == 0


@pytest.mark.asyncio
async def test_open_respects_instrument_class_leverage_cap(store, clock):
    manager = PositionLifecycleManager(
        store,
        clock=clock,
        leverage_caps={InstrumentClass.CRYPTO: 20},
    )

    rejected = await manager.open(btc_params(leverage=100))
    accepted = await manager.open(btc_params(leverage=20))
    fiat = await manager.open(btc_params(
        instrument="EURUSD",
        open_price=Decimal("1.085"),
        leverage=100,
    ))

    assert rejected.code == "VALIDATION_ERROR"
    assert "20" in rejected.message
    assert accepted.success
    assert fiat.success
    assert store.open_calls == 2


@pytest.mark.asyncio
async def test_open_store_failure_is_retryable_and_leaves_no_trace(manager, store):
    store.fail_writes = True

    result = await manager.open(btc_params())

    assert not result.success
    assert result.retryable
    assert manager.list_positions() == []
    assert manager.cached_balance("user-1") is None


@pytest.mark.asyncio
async def test_open_for_unknown_owner(manager):
    result = await manager.open(btc_params(owner_id="ghost"))

    assert not result.success
    assert result.code == "USER_NOT_FOUND"


# ==================== TICK TESTS ====================

@pytest.mark.asyncio
async def test_quote_reprices_open_positions(manager, clock):
    position_id = (await manager.open(btc_params())).data

    updated = manager.apply_quote("BTC/USDT", Decimal("44000"), clock() + timedelta(seconds=1))

    assert updated == [position_id]
    position = manager.get(position_id)
    assert position.current_price == Decimal("44000")
    assert position.profit.quantize(Decimal("0.01")) == Decimal("17.34")
    assert position.position_value == Decimal("44.000")


@pytest.mark.asyncio
async def test_stale_quotes_are_dropped(manager, clock):
    position_id = (await manager.open(btc_params())).data

    manager.apply_quote("BTCUSDT", Decimal("44000"), clock() + timedelta(seconds=10))
    stale = manager.apply_quote("BTCUSDT", Decimal("40000"), clock() + timedelta(seconds=5))

    assert stale == []
    assert manager.get(position_id).current_price == Decimal("44000")


@pytest.mark.asyncio
async def test_quote_for_other_symbol_changes_nothing(manager):
    position_id = (await manager.open(btc_params())).data

    assert manager.apply_quote("ETHUSDT", Decimal("2600")) == []
    assert manager.get(position_id).current_price == Decimal("43250")


@pytest.mark.asyncio
async def test_elapsed_position_freezes_instead_of_repricing(manager, clock):
    position_id = (await manager.open(btc_params())).data
    clock.advance(minutes=31)

    updated = manager.apply_quote("BTCUSDT", Decimal("50000"))

    assert updated == []
    position = manager.get(position_id)
    assert position.status == PositionStatus.EXPIRED
    assert position.current_price == Decimal("43250")
    assert manager.active_symbols == set()

    # Further ticks leave the frozen position alone
    clock.advance(seconds=5)
    assert manager.apply_quote("BTCUSDT", Decimal("51000")) == []
    assert manager.get(position_id).current_price == Decimal("43250")


@pytest.mark.asyncio
async def test_protective_level_hit_is_recorded_once(manager):
    position_id = (await manager.open(btc_params(stop_loss=Decimal("42000")))).data

    manager.apply_quote("BTCUSDT", Decimal("41900"))

    assert manager.drain_triggers() == {position_id: CloseReason.STOP_LOSS}
    assert manager.drain_triggers() == {}


@pytest.mark.asyncio
async def test_expire_due_notifies_symbol_listeners(manager, clock):
    seen = []
    manager.add_symbols_listener(seen.append)
    position_id = (await manager.open(btc_params())).data

    clock.advance(minutes=30)
    expired = manager.expire_due()

    assert expired == [position_id]
    assert seen == [{"BTCUSDT"}, set()]
    assert [p.id for p in manager.expired_positions()] == [position_id]


# ==================== CLOSE TESTS ====================

@pytest.mark.asyncio
async def test_close_finalizes_and_credits_balance(manager, store):
    position_id = (await manager.open(btc_params())).data
    manager.apply_quote("BTCUSDT", Decimal("44000"))

    result = await manager.close(position_id)

    assert result.success
    assert result.data["status"] == "closed"
    assert result.data["close_price"] == Decimal("44000")
    assert manager.get(position_id) is None
    assert store.positions[position_id].status == PositionStatus.CLOSED
    assert store.positions[position_id].close_reason == CloseReason.MANUAL
    expected = Decimal("10000") + result.data["profit"]
    assert store.balances["user-1"] == expected
    assert manager.cached_balance("user-1") == expected
    assert manager.active_symbols == set()


@pytest.mark.asyncio
async def test_close_unknown_position(manager):
    result = await manager.close("missing")

    assert not result.success
    assert result.code == "POSITION_NOT_FOUND"
    assert result.status_code == 404


@pytest.mark.asyncio
async def test_close_outside_scope_is_not_found(manager, store):
    position_id = (await manager.open(btc_params())).data

    result = await manager.close(position_id, scope=OwnerScope.only(["user-2"]))

    assert result.code == "POSITION_NOT_FOUND"
    assert manager.get(position_id) is not None
    assert store.close_calls == []


@pytest.mark.asyncio
async def test_close_failure_keeps_position_active(manager, store):
    position_id = (await manager.open(btc_params())).data
    store.fail_writes = True

    result = await manager.close(position_id)

    assert not result.success
    assert result.retryable
    assert manager.get(position_id) is not None
    assert not manager.is_closing(position_id)


@pytest.mark.asyncio
async def test_close_conflict_drops_local_copy(manager, store):
    position_id = (await manager.open(btc_params())).data
    store.conflict_on_close = True

    result = await manager.close(position_id)

    assert result.code == "POSITION_CONFLICT"
    assert manager.get(position_id) is None


@pytest.mark.asyncio
async def test_close_in_flight_blocks_ticks_and_second_close(clock):
    store = GatedStore(balances={"user-1": Decimal("10000")})
    manager = PositionLifecycleManager(store, clock=clock)
    position_id = (await manager.open(btc_params())).data

    task = asyncio.create_task(manager.close(position_id))
    await asyncio.sleep(0)

    assert manager.is_closing(position_id)
    assert manager.apply_quote("BTCUSDT", Decimal("45000")) == []

    second = await manager.close(position_id)
    assert second.code == "POSITION_CONFLICT"

    refreshed = await manager.refresh()
    assert refreshed.success
    assert manager.get(position_id).current_price == Decimal("43250")

    store.gate.set()
    result = await task

    assert result.success
    assert result.data["close_price"] == Decimal("43250")
    assert len(store.close_calls) == 1
    assert manager.get(position_id) is None
    assert not manager.is_closing(position_id)


@pytest.mark.asyncio
async def test_expired_position_closes_at_frozen_price(manager, store, clock):
    position_id = (await manager.open(btc_params())).data
    manager.apply_quote("BTCUSDT", Decimal("44000"))
    clock.advance(minutes=45)
    manager.expire_due()
    manager.apply_quote("BTCUSDT", Decimal("30000"))

    result = await manager.close(position_id, reason=CloseReason.EXPIRED)

    assert result.success
    assert store.close_calls[0]["close_price"] == Decimal("44000")
    assert store.close_calls[0]["reason"] == CloseReason.EXPIRED


@pytest.mark.asyncio
async def test_liquidate(manager, store):
    position_id = (await manager.open(btc_params())).data

    result = await manager.liquidate(position_id)

    assert result.success
    assert result.data["status"] == "liquidated"
    assert store.positions[position_id].status == PositionStatus.LIQUIDATED
    assert store.positions[position_id].close_reason == CloseReason.LIQUIDATION


# ==================== REFRESH TESTS ====================

@pytest.mark.asyncio
async def test_refresh_loads_and_expires(manager, store, clock):
    fresh = store.add(make_position(open_time=clock() - timedelta(minutes=5)))
    stale = store.add(make_position(open_time=clock() - timedelta(hours=2)))
    store.add(make_position(status=PositionStatus.CLOSED))

    result = await manager.refresh()

    assert result.success
    assert result.data == 2
    assert manager.get(fresh.id).status == PositionStatus.OPEN
    assert manager.get(stale.id).status == PositionStatus.EXPIRED
    assert manager.active_symbols == {"BTCUSDT"}


@pytest.mark.asyncio
async def test_refresh_drops_positions_gone_from_store(manager, store):
    position_id = (await manager.open(btc_params())).data
    del store.positions[position_id]

    await manager.refresh()

    assert manager.get(position_id) is None


@pytest.mark.asyncio
async def test_refresh_keeps_local_prices(manager, store):
    position_id = (await manager.open(btc_params())).data
    manager.apply_quote("BTCUSDT", Decimal("44000"))

    await manager.refresh()

    assert manager.get(position_id).current_price == Decimal("44000")


@pytest.mark.asyncio
async def test_close_during_refresh_is_not_undone(clock):
    store = SnapshotGatedStore(balances={"user-1": Decimal("10000")})
    manager = PositionLifecycleManager(store, clock=clock)
    position_id = (await manager.open(btc_params())).data

    refresh = asyncio.create_task(manager.refresh())
    await store.snapshot_taken.wait()

    closed = await manager.close(position_id)
    assert closed.success
    assert manager.get(position_id) is None

    store.gate.set()
    assert (await refresh).success

    assert manager.get(position_id) is None
    assert manager.apply_quote("BTCUSDT", Decimal("44000")) == []
    assert manager.active_symbols == set()


@pytest.mark.asyncio
async def test_open_during_refresh_is_kept(clock):
    store = SnapshotGatedStore(balances={"user-1": Decimal("10000")})
    manager = PositionLifecycleManager(store, clock=clock)

    refresh = asyncio.create_task(manager.refresh())
    await store.snapshot_taken.wait()

    position_id = (await manager.open(btc_params())).data
    store.gate.set()
    await refresh

    assert manager.get(position_id) is not None


@pytest.mark.asyncio
async def test_refresh_failure_reports_database_error(manager, store):
    store.fail_reads = True

    result = await manager.refresh()

    assert not result.success
    assert result.code == "DATABASE_ERROR"
    assert result.retryable


# ==================== READ TESTS ====================

@pytest.mark.asyncio
async def test_get_returns_copies(manager):
    position_id = (await manager.open(btc_params())).data

    copy = manager.get(position_id)
    copy.current_price = Decimal("1")

    assert manager.get(position_id).current_price == Decimal("43250")


@pytest.mark.asyncio
async def test_list_positions_filters_by_owner_and_scope(manager):
    mine = (await manager.open(btc_params())).data
    theirs = (await manager.open(btc_params(owner_id="user-2"))).data

    assert [p.id for p in manager.list_positions(owner_id="user-1")] == [mine]
    assert [p.id for p in manager.list_positions(scope=OwnerScope.only(["user-2"]))] == [theirs]
    assert len(manager.list_positions(scope=OwnerScope.everyone())) == 2


@pytest.mark.asyncio
async def test_risk_snapshot(manager):
    await manager.open(btc_params())
    manager.apply_quote("BTCUSDT", Decimal("44000"))

    snapshot = await manager.risk_snapshot("user-1")

    assert snapshot.total_capital == Decimal("9000")
    assert snapshot.total_margin_used == Decimal("0.44")
    assert snapshot.open_positions == 1
    assert snapshot.total_unrealized_pnl.quantize(Decimal("0.01")) == Decimal("17.34")


@pytest.mark.asyncio
async def test_risk_snapshot_loads_balance_when_not_cached(manager):
    snapshot = await manager.risk_snapshot("user-2")

    assert snapshot.total_capital == Decimal("5000")
    assert snapshot.free_margin == Decimal("5000")
    assert manager.cached_balance("user-2") == Decimal("5000")
