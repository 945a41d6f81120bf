"""
Market Data Module

API endpoints for market data:
- Current prices (live or synthetic)
- Historical OHLCV candles
"""

from app.modules.market.router import router

__all__ = ["router"]
