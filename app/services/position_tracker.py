"""
Position Tracking Service

Connects the price feed to the lifecycle manager: one feed subscription per
symbol with an open position, stop loss/take profit execution, and the
periodic expiry sweep.
"""

import asyncio
from typing import Dict, List, Optional, Set

from app.domain.models.position import CloseReason
from app.domain.models.quote import PriceQuote
from app.domain.services.lifecycle_manager import PositionLifecycleManager
from app.services.price_feed_service import PriceFeedAdapter, Subscription
from app.shared.models import OperationResult
from app.utils.logger import get_logger

logger = get_logger(__name__)


class PositionTrackerService:
    """
    Position Tracking Service

    Features:
    - Subscriptions follow the set of symbols with open positions
    - Every quote reprices the matching positions
    - Stop loss/take profit hits are closed right after the tick
    - Expired positions are closed at their frozen price (configurable)

    Usage:
        tracker = PositionTrackerService(manager, feed, expiry_interval=30)
        await tracker.start()
        ...
        await tracker.stop()
    """

    def __init__(
        self,
        manager: PositionLifecycleManager,
        feed: PriceFeedAdapter,
        expiry_interval: float = 30.0,
        auto_close_expired: bool = True,
    ):
        self.manager = manager
        self.feed = feed
        self.expiry_interval = expiry_interval
        self.auto_close_expired = auto_close_expired

        self._subscriptions: Dict[str, Subscription] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

        manager.add_symbols_listener(self.sync_subscriptions)

    # ==================== SUBSCRIPTIONS ====================

    def sync_subscriptions(self, symbols: Set[str]) -> None:
        """Subscribe new symbols and cancel the ones nobody holds anymore."""
        for symbol in symbols - set(self._subscriptions):
            self._subscriptions[symbol] = self.feed.subscribe(symbol, self.on_quote)
            logger.info(f"Tracking {symbol}")

        for symbol in set(self._subscriptions) - symbols:
            self._subscriptions.pop(symbol).cancel()
            logger.info(f"Stopped tracking {symbol}")

    @property
    def tracked_symbols(self) -> Set[str]:
        return set(self._subscriptions)

    # ==================== TICKS ====================

    async def on_quote(self, quote: PriceQuote) -> List[OperationResult]:
        """Apply a quote, then close positions that hit a protective level."""
        self.manager.apply_price_quote(quote)

        results = []
        for position_id, reason in self.manager.drain_triggers().items():
            logger.info(f"Position {position_id} hit {reason.value} at {quote.price}")
            results.append(await self.manager.close(position_id, reason=reason))
        return results

    # ==================== EXPIRY ====================

    async def sweep_expired(self) -> List[str]:
        """
        Freeze elapsed positions; close them when auto-close is enabled.

        Returns:
            Ids of positions closed by this sweep
        """
        self.manager.expire_due()
        if not self.auto_close_expired:
            return []

        closed = []
        for position in self.manager.expired_positions():
            result = await self.manager.close(position.id, reason=CloseReason.EXPIRED)
            if result.success:
                closed.append(position.id)
            else:
                logger.warning(f"Expiry close of {position.id} failed: {result.message}")
        return closed

    async def _expiry_loop(self) -> None:
        while self._running:
            try:
                await self.sweep_expired()
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.expiry_interval)

    # ==================== LIFECYCLE ====================

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.sync_subscriptions(self.manager.active_symbols)
        self._task = asyncio.create_task(self._expiry_loop())
        logger.info("Position tracker started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for subscription in self._subscriptions.values():
            subscription.cancel()
        self._subscriptions.clear()
        logger.info("Position tracker stopped")
