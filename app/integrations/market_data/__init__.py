"""
Market Data Integrations

Quote providers walked in order by the price feed:
- Binance public REST API (primary host, public data mirror)
- Synthetic generator (guaranteed last strategy)
"""

from app.integrations.market_data.base import QuoteProvider, QuoteSourceError
from app.integrations.market_data.binance_client import BinanceQuoteProvider
from app.integrations.market_data.synthetic_provider import SyntheticQuoteProvider
from app.integrations.market_data.strategy_chain import QuoteStrategyChain

__all__ = [
    "QuoteProvider",
    "QuoteSourceError",
    "BinanceQuoteProvider",
    "SyntheticQuoteProvider",
    "QuoteStrategyChain",
]
