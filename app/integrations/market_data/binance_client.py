"""
Binance Public API Quote Provider

FREE - No API key required!
One instance per REST host (primary API, public data mirror). Only crypto
instruments are answered; everything else falls through the chain.

Last Updated: 2026-10-19
"""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from app.domain.instruments import InstrumentClass, classify, normalize_symbol
from app.domain.models.quote import Candle, PriceQuote
from app.integrations.market_data.base import (
    DEFAULT_INTERVAL,
    INTERVALS,
    QuoteProvider,
    QuoteSourceError,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)


DEFAULT_BASE_URL = "https://api.binance.com/api/v3"
MAX_KLINES = 1000


class BinanceQuoteProvider(QuoteProvider):
    """
    Binance REST quote provider

    Usage:
        provider = BinanceQuoteProvider("https://data-api.binance.vision/api/v3")
        quotes = await provider.fetch_quotes(["BTCUSDT", "ETHUSDT"])
        candles = await provider.fetch_history("BTCUSDT", lookback=48)
        await provider.close()
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout_seconds: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.name = f"binance:{self.base_url.split('//')[-1].split('/')[0]}"
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    async def close(self) -> None:
        """Close HTTP session"""
        if self.session and not self.session.closed:
            await self.session.close()

    @staticmethod
    def to_binance_symbol(symbol: str) -> str:
        """Convert symbol format: BTC/USD -> BTCUSDT"""
        normalized = normalize_symbol(symbol)
        if normalized.endswith("USD"):
            normalized += "T"
        return normalized

    def supports(self, symbol: str) -> bool:
        return classify(symbol) == InstrumentClass.CRYPTO

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}/{path}"
        try:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise QuoteSourceError(
                        f"{self.name} returned {response.status}: {error_text[:200]}"
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise QuoteSourceError(f"{self.name} request failed: {e!r}") from e

    async def fetch_quotes(self, symbols: Sequence[str]) -> Dict[str, PriceQuote]:
        """
        Get 24h tickers for every supported symbol in one request.

        Returns:
            Requested symbol -> PriceQuote
        """
        requested = {
            self.to_binance_symbol(symbol): normalize_symbol(symbol)
            for symbol in symbols
            if self.supports(symbol)
        }
        if not requested:
            return {}

        params = {"symbols": json.dumps(sorted(requested), separators=(",", ":"))}
        data = await self._get_json("ticker/24hr", params)
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list) or not all(isinstance(t, dict) for t in data):
            raise QuoteSourceError(f"{self.name} sent an unexpected ticker payload: {data!r:.200}")

        quotes: Dict[str, PriceQuote] = {}
        for ticker in data:
            symbol = requested.get(ticker.get("symbol"))
            if symbol is None:
                continue
            try:
                quotes[symbol] = PriceQuote(
                    symbol=symbol,
                    price=Decimal(ticker["lastPrice"]),
                    change_24h=Decimal(ticker["priceChangePercent"]),
                    volume=Decimal(ticker.get("quoteVolume") or "0"),
                    timestamp=self._ticker_time(ticker),
                    is_live=True,
                    source=self.name,
                )
            except (KeyError, TypeError, ValueError, InvalidOperation, OverflowError) as e:
                raise QuoteSourceError(f"{self.name} sent a malformed ticker: {e!r}") from e

        logger.debug(f"Fetched {len(quotes)} quotes from {self.name}")
        return quotes

    @staticmethod
    def _ticker_time(ticker: Dict[str, Any]) -> datetime:
        close_time = ticker.get("closeTime")
        if close_time is None:
            return datetime.now(timezone.utc)
        return datetime.fromtimestamp(int(close_time) / 1000, tz=timezone.utc)

    async def fetch_history(
        self,
        symbol: str,
        lookback: int,
        interval: str = DEFAULT_INTERVAL,
    ) -> List[Candle]:
        """
        Get OHLCV candlestick data from Binance.

        Args:
            symbol: Symbol like "BTC/USDT" or "BTCUSDT"
            lookback: Number of candles (max: 1000)
            interval: Timeframe: "1m", "5m", "15m", "1h", "4h", "1d", etc.

        Returns:
            List of Candle objects, oldest first
        """
        if not self.supports(symbol):
            raise QuoteSourceError(f"{self.name} does not quote {symbol}")

        params = {
            "symbol": self.to_binance_symbol(symbol),
            "interval": interval if interval in INTERVALS else DEFAULT_INTERVAL,
            "limit": max(1, min(lookback, MAX_KLINES)),
        }
        data = await self._get_json("klines", params)

        try:
            candles = [
                Candle(
                    timestamp=datetime.fromtimestamp(kline[0] / 1000, tz=timezone.utc),
                    open=Decimal(kline[1]),
                    high=Decimal(kline[2]),
                    low=Decimal(kline[3]),
                    close=Decimal(kline[4]),
                    volume=Decimal(kline[5]),
                    is_live=True,
                )
                for kline in data
            ]
        except (IndexError, KeyError, TypeError, ValueError, InvalidOperation, OverflowError) as e:
            raise QuoteSourceError(f"{self.name} sent malformed klines: {e!r}") from e

        candles.sort(key=lambda c: c.timestamp)
        logger.debug(f"Fetched {len(candles)} candles for {symbol} from {self.name}")
        return candles
