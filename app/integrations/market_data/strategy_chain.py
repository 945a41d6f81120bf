"""
Quote Strategy Chain

Ordered list of quote providers. For every symbol the first provider that
answers wins; the synthetic provider is always the last strategy, so a
request never comes back empty-handed.
"""

from typing import Dict, List, Optional, Sequence

from app.domain.instruments import normalize_symbol
from app.domain.models.quote import Candle, PriceQuote
from app.integrations.market_data.base import DEFAULT_INTERVAL, QuoteProvider, QuoteSourceError
from app.integrations.market_data.binance_client import BinanceQuoteProvider
from app.integrations.market_data.synthetic_provider import SyntheticQuoteProvider
from app.utils.logger import get_logger

logger = get_logger(__name__)


class QuoteStrategyChain:
    """
    Quote Strategy Chain

    Usage:
        chain = QuoteStrategyChain([primary, mirror], synthetic)
        quotes = await chain.quotes(["BTCUSDT", "EURUSD"])
        candles = await chain.history("BTCUSDT", lookback=48)
    """

    def __init__(
        self,
        providers: Sequence[QuoteProvider],
        synthetic: Optional[SyntheticQuoteProvider] = None,
    ):
        self.providers: List[QuoteProvider] = list(providers)
        self.synthetic = synthetic or SyntheticQuoteProvider()

    @classmethod
    def from_urls(
        cls,
        urls: Sequence[str],
        timeout_seconds: float = 5.0,
        max_variation: float = 0.02,
    ) -> "QuoteStrategyChain":
        """Binance provider per URL, in order, then the synthetic fallback."""
        providers = [BinanceQuoteProvider(url, timeout_seconds=timeout_seconds) for url in urls]
        return cls(providers, SyntheticQuoteProvider(max_variation=max_variation))

    async def quotes(self, symbols: Sequence[str]) -> Dict[str, PriceQuote]:
        """One quote per requested symbol, live where any source answers."""
        remaining = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        result: Dict[str, PriceQuote] = {}

        for provider in self.providers:
            candidates = [s for s in remaining if provider.supports(s)]
            if not candidates:
                continue

            try:
                answered = await provider.fetch_quotes(candidates)
            except QuoteSourceError as e:
                logger.warning(f"Quote attempt via {provider.name} failed: {e}")
                continue
            except Exception as e:
                logger.error(f"Quote attempt via {provider.name} crashed: {e!r}", exc_info=True)
                continue

            for symbol, quote in answered.items():
                if symbol in remaining and symbol not in result:
                    result[symbol] = quote
                    self.synthetic.remember(quote)

            remaining = [s for s in remaining if s not in result]
            if not remaining:
                break

        if remaining:
            logger.warning(f"Using synthetic quotes for: {', '.join(remaining)}")
            result.update(await self.synthetic.fetch_quotes(remaining))

        return result

    async def history(
        self,
        symbol: str,
        lookback: int,
        interval: str = DEFAULT_INTERVAL,
    ) -> List[Candle]:
        """Candles oldest first from the first source that returns any."""
        symbol = normalize_symbol(symbol)

        for provider in self.providers:
            if not provider.supports(symbol):
                continue
            try:
                candles = await provider.fetch_history(symbol, lookback, interval)
            except QuoteSourceError as e:
                logger.warning(f"History attempt via {provider.name} failed: {e}")
                continue
            except Exception as e:
                logger.error(f"History attempt via {provider.name} crashed: {e!r}", exc_info=True)
                continue
            if candles:
                return candles

        logger.warning(f"Using synthetic history for {symbol}")
        return await self.synthetic.fetch_history(symbol, lookback, interval)

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()
