"""
Market Data Router

API endpoints for market data.
Prices always resolve: when every upstream source fails the response
carries synthetic quotes flagged ``is_live=false``.
"""

from fastapi import APIRouter, Depends, Query, status

from app.core.dependencies import get_price_feed
from app.core.responses import error_json_response, success_response
from app.integrations.market_data.base import INTERVALS
from app.modules.market.schemas import CandleResponse, HistoryResponse, QuoteResponse
from app.services.price_feed_service import PriceFeedAdapter
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/market", tags=["Market Data"])

MAX_SYMBOLS = 50


# ==================== CURRENT PRICES ====================

@router.get(
    "/prices",
    summary="Get current prices",
    description="Comma-separated symbols, e.g. BTCUSDT,ETHUSDT,EURUSD",
)
async def get_prices(
    symbols: str = Query(..., description="Comma-separated symbols"),
    feed: PriceFeedAdapter = Depends(get_price_feed),
):
    """Get current quotes"""
    requested = [s.strip() for s in symbols.split(",") if s.strip()]
    if not requested or len(requested) > MAX_SYMBOLS:
        return error_json_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation failed",
            "VALIDATION_ERROR",
            f"Provide between 1 and {MAX_SYMBOLS} symbols",
        )

    quotes = await feed.get_current_prices(requested)
    return success_response(
        status_code=status.HTTP_200_OK,
        message="Prices retrieved successfully",
        data={
            symbol: QuoteResponse(**quote.to_dict()).model_dump(mode="json")
            for symbol, quote in quotes.items()
        },
    )


# ==================== HISTORY ====================

@router.get(
    "/history/{symbol}",
    summary="Get OHLCV candles",
    description="Candles oldest first. Symbol format: BTCUSDT or BTC-USDT",
)
async def get_history(
    symbol: str,
    lookback: int = Query(48, ge=1, le=500, description="Number of candles"),
    interval: str = Query("1h", description="Timeframe: 1m, 5m, 15m, 1h, 4h, 1d"),
    feed: PriceFeedAdapter = Depends(get_price_feed),
):
    """Get OHLCV candlestick data"""
    if interval not in INTERVALS:
        return error_json_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation failed",
            "VALIDATION_ERROR",
            f"Unsupported interval: {interval}",
        )

    candles = await feed.get_historical_series(symbol, lookback=lookback, interval=interval)
    history = HistoryResponse(
        symbol=symbol.upper(),
        interval=interval,
        candles=[CandleResponse(**c.to_dict()) for c in candles],
    )
    return success_response(
        status_code=status.HTTP_200_OK,
        message="History retrieved successfully",
        data=history.model_dump(mode="json"),
    )
