"""
Market Data Schemas

Pydantic schemas for market data API responses.
"""

from typing import List
from datetime import datetime
from pydantic import BaseModel


class QuoteResponse(BaseModel):
    """Current quote"""
    symbol: str
    price: float
    change_24h: float
    volume: float
    timestamp: datetime
    is_live: bool
    source: str


class CandleResponse(BaseModel):
    """Single OHLCV candle"""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    is_live: bool


class HistoryResponse(BaseModel):
    """Candle series, oldest first"""
    symbol: str
    interval: str
    candles: List[CandleResponse]
