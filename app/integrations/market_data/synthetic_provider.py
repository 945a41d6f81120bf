"""
Synthetic Quote Provider

Last strategy of the price feed chain. Never fails: quotes are a bounded
random walk around an anchor price (the last live price seen for the
symbol, or the base price table) and are tagged ``is_live=False``.
"""

import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from app.domain.instruments import base_asset, normalize_symbol
from app.domain.models.quote import Candle, PriceQuote
from app.integrations.market_data.base import DEFAULT_INTERVAL, INTERVALS, QuoteProvider


# Reference prices used when no live price was ever seen
BASE_PRICES: Dict[str, Decimal] = {
    "BTC": Decimal("104249.06"),
    "ETH": Decimal("2497.81"),
    "BNB": Decimal("646.21"),
    "XRP": Decimal("2.18"),
    "ADA": Decimal("0.61"),
    "SOL": Decimal("147.54"),
    "DOT": Decimal("3.72"),
    "MATIC": Decimal("0.45"),
    "LINK": Decimal("13.04"),
    "DOGE": Decimal("0.167"),
    "AVAX": Decimal("18.64"),
    "UNI": Decimal("7.35"),
    "LTC": Decimal("84.06"),
    "BCH": Decimal("463.40"),
    "ATOM": Decimal("4.04"),
    "ALGO": Decimal("0.17"),
    "TRX": Decimal("0.275"),
    "ETC": Decimal("16.47"),
    "USDC": Decimal("1.0"),
    "USDT": Decimal("1.0"),
    "BUSD": Decimal("1.0"),
    "DAI": Decimal("1.0"),
    "XAU": Decimal("2040.50"),
    "EURUSD": Decimal("1.0850"),
    "GBPUSD": Decimal("1.2650"),
    "USDJPY": Decimal("149.50"),
}

DEFAULT_BASE_PRICE = Decimal("100")

STABLECOINS = frozenset({"USDT", "USDC", "BUSD", "DAI"})
MAJORS = frozenset({"BTC", "ETH"})

MAX_HISTORY_POINTS = 500
PRICE_FLOOR = Decimal("0.00000001")


def _asset_key(symbol: str) -> str:
    normalized = normalize_symbol(symbol)
    if normalized in BASE_PRICES:
        return normalized
    return base_asset(normalized) or normalized


def base_price(symbol: str) -> Decimal:
    return BASE_PRICES.get(_asset_key(symbol), DEFAULT_BASE_PRICE)


def tick_variation(symbol: str) -> float:
    """Maximum relative step of one synthetic tick."""
    key = _asset_key(symbol)
    if key in MAJORS:
        return 0.001
    if key in STABLECOINS:
        return 0.0001
    if base_price(symbol) < 1:
        return 0.005
    return 0.002


class SyntheticQuoteProvider(QuoteProvider):
    """
    Synthetic quote generator

    Usage:
        synthetic = SyntheticQuoteProvider(max_variation=0.02, rng=random.Random(7))
        synthetic.remember(live_quote)
        quotes = await synthetic.fetch_quotes(["BTCUSDT"])
    """

    name = "synthetic"

    def __init__(
        self,
        max_variation: float = 0.02,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.max_variation = Decimal(str(max_variation))
        self.rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._anchors: Dict[str, Decimal] = {}
        self._last: Dict[str, Decimal] = {}

    def remember(self, quote: PriceQuote) -> None:
        """Record a live price as the anchor for future synthetic quotes."""
        if not quote.is_live or quote.price <= 0:
            return
        symbol = normalize_symbol(quote.symbol)
        self._anchors[symbol] = quote.price
        self._last[symbol] = quote.price

    def anchor(self, symbol: str) -> Decimal:
        symbol = normalize_symbol(symbol)
        return self._anchors.get(symbol) or base_price(symbol)

    def next_price(self, symbol: str) -> Decimal:
        """One random-walk step, clamped to the anchor band."""
        symbol = normalize_symbol(symbol)
        anchor = self.anchor(symbol)
        last = self._last.get(symbol, anchor)

        step = Decimal(str(self.rng.uniform(-1.0, 1.0) * tick_variation(symbol)))
        price = last * (1 + step)

        lower = anchor * (1 - self.max_variation)
        upper = anchor * (1 + self.max_variation)
        price = max(min(max(price, lower), upper), PRICE_FLOOR)

        self._last[symbol] = price
        return price

    def quote(self, symbol: str) -> PriceQuote:
        symbol = normalize_symbol(symbol)
        price = self.next_price(symbol)
        anchor = self.anchor(symbol)
        change = (price - anchor) / anchor * 100 if anchor > 0 else Decimal("0")
        volume = Decimal(str(round(1_000_000 * (0.5 + self.rng.random()), 2)))
        return PriceQuote(
            symbol=symbol,
            price=price,
            change_24h=change,
            volume=volume,
            timestamp=self._clock(),
            is_live=False,
            source=self.name,
        )

    async def fetch_quotes(self, symbols: Sequence[str]) -> Dict[str, PriceQuote]:
        return {normalize_symbol(s): self.quote(s) for s in symbols}

    def history(self, symbol: str, lookback: int, interval: str = DEFAULT_INTERVAL) -> List[Candle]:
        """
        Random OHLC run anchored to the base price, oldest first.

        Closes never drop below 80% of the base price.
        """
        base = base_price(symbol)
        points = max(1, min(lookback, MAX_HISTORY_POINTS))
        width = INTERVALS.get(interval, INTERVALS[DEFAULT_INTERVAL])
        volatility = 0.02 if _asset_key(symbol) in MAJORS else 0.03
        floor = base * Decimal("0.8")

        now = self._clock()
        start = now - width * points
        price = base * Decimal(str(0.95 + self.rng.random() * 0.1))

        candles = []
        for i in range(points):
            open_ = price
            change = Decimal(str((self.rng.random() - 0.5) * volatility))
            close = max(open_ * (1 + change), floor)
            wick = Decimal(str(volatility * 0.5))
            high = max(open_, close) * (1 + wick * Decimal(str(self.rng.random())))
            low = min(open_, close) * (1 - wick * Decimal(str(self.rng.random())))
            candles.append(Candle(
                timestamp=start + width * (i + 1),
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=Decimal(str(round(1_000_000 * (0.5 + self.rng.random()), 2))),
                is_live=False,
            ))
            price = close

        return candles

    async def fetch_history(
        self,
        symbol: str,
        lookback: int,
        interval: str = DEFAULT_INTERVAL,
    ) -> List[Candle]:
        return self.history(symbol, lookback, interval)
