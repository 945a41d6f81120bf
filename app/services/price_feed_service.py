"""
Price Feed Service

Polls the quote strategy chain for every subscribed symbol and dispatches
each quote to that symbol's subscribers. Within a symbol, quotes are
delivered in source-timestamp order; older quotes are dropped.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.domain.instruments import normalize_symbol
from app.domain.models.quote import Candle, PriceQuote
from app.integrations.market_data.base import DEFAULT_INTERVAL
from app.integrations.market_data.strategy_chain import QuoteStrategyChain
from app.utils.logger import get_logger

logger = get_logger(__name__)

QuoteCallback = Callable[[PriceQuote], Any]


class Subscription:
    """Handle returned by ``subscribe``; ``cancel()`` stops delivery at once."""

    def __init__(self, feed: "PriceFeedAdapter", symbol: str, callback: QuoteCallback):
        self._feed = feed
        self.symbol = symbol
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)


class PriceFeedAdapter:
    """
    Price Feed Adapter

    Usage:
        feed = PriceFeedAdapter(QuoteStrategyChain.from_urls(urls))
        subscription = feed.subscribe("BTCUSDT", on_quote)
        await feed.start()
        ...
        subscription.cancel()
        await feed.stop()
    """

    def __init__(self, chain: QuoteStrategyChain, poll_interval: float = 3.0):
        self.chain = chain
        self.poll_interval = poll_interval
        self._subscribers: Dict[str, List[Subscription]] = {}  # symbol -> subscriptions
        self._latest: Dict[str, PriceQuote] = {}  # symbol -> latest quote cache
        self._task: Optional[asyncio.Task] = None
        self._running = False

    # ==================== SUBSCRIPTIONS ====================

    def subscribe(self, symbol: str, callback: QuoteCallback) -> Subscription:
        """Register a callback for every future quote of ``symbol``."""
        symbol = normalize_symbol(symbol)
        subscription = Subscription(self, symbol, callback)
        self._subscribers.setdefault(symbol, []).append(subscription)
        logger.debug(f"Subscribed to {symbol}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscribers.get(subscription.symbol, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._subscribers.pop(subscription.symbol, None)
            logger.debug(f"No subscribers left for {subscription.symbol}")

    @property
    def subscribed_symbols(self) -> List[str]:
        return list(self._subscribers)

    # ==================== QUERIES ====================

    def latest_quote(self, symbol: str) -> Optional[PriceQuote]:
        """Last quote seen for ``symbol``, if any."""
        return self._latest.get(normalize_symbol(symbol))

    async def get_current_prices(self, symbols: Sequence[str]) -> Dict[str, PriceQuote]:
        """Fresh quotes for ``symbols``; never raises, never returns gaps."""
        quotes = await self.chain.quotes(symbols)
        for quote in quotes.values():
            self._remember(quote)
        return quotes

    async def get_historical_series(
        self,
        symbol: str,
        lookback: int = 48,
        interval: str = DEFAULT_INTERVAL,
    ) -> List[Candle]:
        """Candles oldest first."""
        return await self.chain.history(symbol, lookback, interval)

    def _remember(self, quote: PriceQuote) -> bool:
        """Cache ``quote`` unless it is older than the cached one."""
        current = self._latest.get(quote.symbol)
        if current is not None and quote.timestamp < current.timestamp:
            return False
        self._latest[quote.symbol] = quote
        return True

    # ==================== POLLING ====================

    async def poll_once(self) -> int:
        """
        Fetch every subscribed symbol in one chain request and dispatch.

        Returns:
            Number of callbacks invoked
        """
        symbols = self.subscribed_symbols
        if not symbols:
            return 0

        quotes = await self.chain.quotes(symbols)

        delivered = 0
        for symbol, quote in quotes.items():
            if not self._remember(quote):
                logger.debug(f"Dropping out-of-order quote for {symbol}")
                continue
            for subscription in list(self._subscribers.get(symbol, [])):
                if not subscription.active:
                    continue
                try:
                    result = subscription.callback(quote)
                    if asyncio.iscoroutine(result):
                        await result
                    delivered += 1
                except Exception as e:
                    logger.error(f"Quote callback for {symbol} failed: {e}", exc_info=True)

        return delivered

    async def _poll_loop(self) -> None:
        while self._running:
            loop = asyncio.get_running_loop()
            started = loop.time()
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Price poll failed: {e}", exc_info=True)
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.poll_interval - elapsed))

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Price feed started (every {self.poll_interval}s)")

    async def stop(self) -> None:
        """Stop polling and release transport sessions."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.chain.close()
        logger.info("Price feed stopped")

    @property
    def is_running(self) -> bool:
        return self._running

