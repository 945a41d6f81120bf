"""
FastAPI main application.

Entry point for the practice trading core backend.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.config import settings, get_settings, Settings
from app.config.database import connect_to_mongodb, close_mongodb_connection, get_database
from app.domain.services.lifecycle_manager import PositionLifecycleManager
from app.domain.services.modification_service import PositionModificationService
from app.integrations.market_data.strategy_chain import QuoteStrategyChain
from app.repositories.position_repository import PositionRepository
from app.repositories.position_store import PositionStore
from app.services.position_tracker import PositionTrackerService
from app.services.price_feed_service import PriceFeedAdapter
from app.utils.logger import get_logger

logger = get_logger(__name__)


def wire_services(app: FastAPI, store: PositionStore, config: Settings) -> None:
    """
    Build the feed, lifecycle manager, modification service and tracker
    over ``store`` and attach them to ``app.state``.
    """
    chain = QuoteStrategyChain.from_urls(
        config.PRICE_SOURCE_URLS,
        timeout_seconds=config.PRICE_REQUEST_TIMEOUT_SECONDS,
        max_variation=config.SYNTHETIC_MAX_VARIATION,
    )
    feed = PriceFeedAdapter(chain, poll_interval=config.PRICE_POLL_INTERVAL_SECONDS)
    manager = PositionLifecycleManager(
        store,
        quote_lookup=feed.latest_quote,
        min_leverage=config.MIN_LEVERAGE,
        max_leverage=config.MAX_LEVERAGE,
        leverage_caps=config.LEVERAGE_CAPS,
    )
    tracker = PositionTrackerService(
        manager,
        feed,
        expiry_interval=config.EXPIRY_CHECK_INTERVAL_SECONDS,
        auto_close_expired=config.AUTO_CLOSE_EXPIRED_POSITIONS,
    )

    app.state.position_store = store
    app.state.price_feed = feed
    app.state.lifecycle_manager = manager
    app.state.modification_service = PositionModificationService(store, manager)
    app.state.position_tracker = tracker


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting application...")
    config = get_settings()

    try:
        await connect_to_mongodb()

        store = PositionRepository(get_database(), use_transactions=config.MONGODB_USE_TRANSACTIONS)
        wire_services(app, store, config)

        # Load open positions before quotes start flowing
        result = await app.state.lifecycle_manager.refresh()
        if not result.success:
            logger.warning(f"Initial position load failed: {result.message}")

        await app.state.position_tracker.start()
        await app.state.price_feed.start()

        logger.info("Application started successfully")
    except Exception as e:
        logger.error(f"Failed to start application: {str(e)}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down application...")

    try:
        await app.state.price_feed.stop()
        await app.state.position_tracker.stop()
        await close_mongodb_connection()

        logger.info("Application shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}")


# API Description
API_DESCRIPTION = """
## Practice Trading Core API

Simulated leveraged trading: positions, live margin and P&L, and audited
operator overrides.

### Identity

Requests arrive through a trusted gateway that sets:
- `X-User-Id`: caller id (required)
- `X-User-Role`: `user`, `mentor` (alias `maestro`) or `admin`
- `X-User-Name`: display name recorded in audit entries

### Response Format

**Success Response:**
```json
{
  "status_code": 200,
  "message": "Operation successful",
  "data": { ... },
  "error": null
}
```

**Error Response:**
```json
{
  "status_code": 409,
  "message": "Operation failed",
  "data": null,
  "error": {
    "code": "POSITION_CONFLICT",
    "message": "Position is no longer open"
  }
}
```
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME if settings else "Practice Trading Core",
    version=settings.APP_VERSION if settings else "1.0.0",
    description=API_DESCRIPTION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if settings else ["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from app.modules.positions.router import router as positions_router
from app.modules.admin_positions.router import router as admin_positions_router
from app.modules.admin_leverage.router import router as admin_leverage_router
from app.modules.market.router import router as market_router

app.include_router(positions_router, prefix="/api/v1")
app.include_router(admin_positions_router, prefix="/api/v1")
app.include_router(admin_leverage_router, prefix="/api/v1")
app.include_router(market_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME if settings else "Practice Trading Core",
        "version": settings.APP_VERSION if settings else "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    feed = getattr(app.state, "price_feed", None)
    return {
        "status": "healthy",
        "app": settings.APP_NAME if settings else "Practice Trading Core",
        "version": settings.APP_VERSION if settings else "1.0.0",
        "price_feed_running": bool(feed and feed.is_running),
    }
