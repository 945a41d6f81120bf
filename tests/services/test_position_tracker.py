"""
Position Tracker Tests

Feed subscriptions that follow open positions, protective-level closes
and the expiry sweep.
"""

import asyncio
import pytest
from datetime import timedelta
from decimal import Decimal

from app.domain.models.position import CloseReason, DurationUnit, PositionDirection, PositionStatus
from app.domain.models.quote import PriceQuote
from app.domain.services.lifecycle_manager import OpenPositionParams
from app.services.position_tracker import PositionTrackerService


def params(**overrides) -> OpenPositionParams:
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


# ==================== SUBSCRIPTION TESTS ====================

@pytest.mark.asyncio
async def test_subscriptions_follow_open_positions(tracker, manager, feed):
    position_id = (await manager.open(params())).data

    assert tracker.tracked_symbols == {"BTCUSDT"}
    assert feed.subscribed_symbols == ["BTCUSDT"]

    await manager.close(position_id)

    assert tracker.tracked_symbols == set()
    assert feed.subscribed_symbols == []


@pytest.mark.asyncio
async def test_one_subscription_per_symbol(tracker, manager, feed):
    await manager.open(params())
    await manager.open(params(owner_id="user-2"))
    await manager.open(params(instrument="ETHUSDT", open_price=Decimal("2500")))

    assert tracker.tracked_symbols == {"BTCUSDT", "ETHUSDT"}
    assert sorted(feed.subscribed_symbols) == ["BTCUSDT", "ETHUSDT"]


# ==================== TICK TESTS ====================

@pytest.mark.asyncio
async def test_stop_loss_hit_closes_position(tracker, manager, store, clock):
    position_id = (await manager.open(params(stop_loss=Decimal("42000")))).data

    results = await tracker.on_quote(PriceQuote(
        symbol="BTCUSDT",
        price=Decimal("41900"),
        timestamp=clock() + timedelta(seconds=1),
    ))

    assert len(results) == 1 and results[0].success
    assert manager.get(position_id) is None
    assert store.positions[position_id].close_reason == CloseReason.STOP_LOSS
    assert store.positions[position_id].close_price == Decimal("41900")


@pytest.mark.asyncio
async def test_quote_without_trigger_only_reprices(tracker, manager, store):
    position_id = (await manager.open(params(take_profit=Decimal("45000")))).data

    results = await tracker.on_quote(PriceQuote(symbol="BTCUSDT", price=Decimal("44000")))

    assert results == []
    assert manager.get(position_id).current_price == Decimal("44000")
    assert store.close_calls == []


@pytest.mark.asyncio
async def test_feed_poll_drives_take_profit(tracker, manager, store, feed, live_provider):
    position_id = (await manager.open(params(take_profit=Decimal("45000")))).data
    live_provider.prices["BTCUSDT"] = Decimal("45500")

    delivered = await feed.poll_once()

    assert delivered == 1
    assert store.positions[position_id].status == PositionStatus.CLOSED
    assert store.positions[position_id].close_reason == CloseReason.TAKE_PROFIT


# ==================== EXPIRY TESTS ====================

@pytest.mark.asyncio
async def test_sweep_closes_expired_positions(tracker, manager, store, clock):
    position_id = (await manager.open(params())).data
    clock.advance(minutes=31)

    closed = await tracker.sweep_expired()

    assert closed == [position_id]
    assert store.positions[position_id].close_reason == CloseReason.EXPIRED
    assert store.positions[position_id].close_price == Decimal("43250")


@pytest.mark.asyncio
async def test_sweep_without_auto_close_only_freezes(manager, feed, store, clock):
    tracker = PositionTrackerService(manager, feed, auto_close_expired=False)
    position_id = (await manager.open(params())).data
    clock.advance(minutes=31)

    closed = await tracker.sweep_expired()

    assert closed == []
    assert manager.get(position_id).status == PositionStatus.EXPIRED
    assert store.close_calls == []
    assert tracker.tracked_symbols == set()


@pytest.mark.asyncio
async def test_sweep_keeps_position_when_close_fails(tracker, manager, store, clock):
    position_id = (await manager.open(params())).data
    clock.advance(minutes=31)
    store.fail_writes = True

    closed = await tracker.sweep_expired()

    assert closed == []
    assert manager.get(position_id).status == PositionStatus.EXPIRED


# ==================== LIFECYCLE TESTS ====================

@pytest.mark.asyncio
async def test_start_and_stop(tracker, manager, store, feed):
    await manager.open(params())

    await tracker.start()
    await asyncio.sleep(0.02)
    assert tracker.tracked_symbols == {"BTCUSDT"}

    await tracker.stop()
    assert tracker.tracked_symbols == set()
    assert feed.subscribed_symbols == []
