"""
Pytest configuration and shared fixtures.

Provides an in-memory store, a settable clock, the wired core services and
an HTTP client over an app that carries them on ``app.state``.
"""

import random
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.domain.services.lifecycle_manager import PositionLifecycleManager
from app.domain.services.modification_service import PositionModificationService
from app.integrations.market_data.strategy_chain import QuoteStrategyChain
from app.integrations.market_data.synthetic_provider import SyntheticQuoteProvider
from app.modules.admin_leverage.router import router as admin_leverage_router
from app.modules.admin_positions.router import router as admin_positions_router
from app.modules.market.router import router as market_router
from app.modules.positions.router import router as positions_router
from app.services.position_tracker import PositionTrackerService
from app.services.price_feed_service import PriceFeedAdapter
from tests.fakes import FakeClock, FakePositionStore, StaticQuoteProvider, operator_headers


# ==================== CORE FIXTURES ====================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakePositionStore:
    """Store with a funded trader, a second client and one mentor assignment."""
    store = FakePositionStore(balances={
        "user-1": Decimal("10000"),
        "user-2": Decimal("5000"),
    })
    store.assignments["mentor-1"] = ["user-1"]
    return store


@pytest.fixture
def live_provider() -> StaticQuoteProvider:
    return StaticQuoteProvider({
        "BTCUSDT": Decimal("43250"),
        "ETHUSDT": Decimal("2500"),
    }, name="live")


@pytest.fixture
def chain(live_provider, clock) -> QuoteStrategyChain:
    synthetic = SyntheticQuoteProvider(max_variation=0.02, rng=random.Random(7), clock=clock)
    return QuoteStrategyChain([live_provider], synthetic)


@pytest.fixture
def feed(chain) -> PriceFeedAdapter:
    return PriceFeedAdapter(chain, poll_interval=0.01)


@pytest.fixture
def manager(store, feed, clock) -> PositionLifecycleManager:
    return PositionLifecycleManager(
        store,
        quote_lookup=feed.latest_quote,
        clock=clock,
        min_leverage=1,
        max_leverage=1000,
    )


@pytest.fixture
def modification_service(store, manager, clock) -> PositionModificationService:
    return PositionModificationService(store, manager, clock=clock)


@pytest.fixture
def tracker(manager, feed) -> PositionTrackerService:
    return PositionTrackerService(manager, feed, expiry_interval=0.01)


# ==================== HTTP FIXTURES ====================

@pytest.fixture
def api_app(store, feed, manager, modification_service, tracker) -> FastAPI:
    """FastAPI app with the routers mounted and services on app.state (no lifespan)."""
    app = FastAPI()
    app.include_router(positions_router, prefix="/api/v1")
    app.include_router(admin_positions_router, prefix="/api/v1")
    app.include_router(admin_leverage_router, prefix="/api/v1")
    app.include_router(market_router, prefix="/api/v1")

    app.state.position_store = store
    app.state.price_feed = feed
    app.state.lifecycle_manager = manager
    app.state.modification_service = modification_service
    app.state.position_tracker = tracker
    return app


@pytest.fixture
async def test_client(api_app) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for testing API endpoints.

    Yields:
        AsyncClient bound to the in-process app
    """
    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def trader_headers() -> dict:
    return operator_headers("user-1")


@pytest.fixture
def admin_headers() -> dict:
    return operator_headers("admin-1", role="admin", name="Ada Admin")


@pytest.fixture
def mentor_headers() -> dict:
    return operator_headers("mentor-1", role="maestro", name="Mo Mentor")
