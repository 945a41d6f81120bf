"""
Quote Provider Base Classes

Abstract interface for quote sources. Transport providers (Binance REST
hosts) and the synthetic generator share it, so the price feed can walk
them as one ordered strategy chain.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Sequence

from app.domain.models.quote import Candle, PriceQuote


# Kline interval -> candle width
INTERVALS: Dict[str, timedelta] = {
    "1m": timedelta(minutes=1),
    "3m": timedelta(minutes=3),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "30m": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "4h": timedelta(hours=4),
    "6h": timedelta(hours=6),
    "12h": timedelta(hours=12),
    "1d": timedelta(days=1),
    "1w": timedelta(weeks=1),
}

DEFAULT_INTERVAL = "1h"


class QuoteSourceError(Exception):
    """A single provider attempt failed (transport, status or payload)."""


class QuoteProvider(ABC):
    """
    Abstract base class for quote providers.

    Implementations: BinanceQuoteProvider, SyntheticQuoteProvider.

    A provider may answer for a subset of the requested symbols; the chain
    asks the next provider for whatever is left.
    """

    name: str = "provider"

    def supports(self, symbol: str) -> bool:
        """Whether this provider can quote ``symbol`` at all."""
        return True

    @abstractmethod
    async def fetch_quotes(self, symbols: Sequence[str]) -> Dict[str, PriceQuote]:
        """Quotes for the symbols it can answer. Raises QuoteSourceError."""

    @abstractmethod
    async def fetch_history(
        self,
        symbol: str,
        lookback: int,
        interval: str = DEFAULT_INTERVAL,
    ) -> List[Candle]:
        """Candles oldest first. Raises QuoteSourceError."""

    async def close(self) -> None:
        """Release transport resources."""
