"""
Instrument Classification

Maps instrument symbols to an instrument class and the class to its
contract size (units per lot). Lookup order: explicit symbol table, then
the base asset of the symbol, then the legacy substring rules
(BTC/ETH -> crypto, XAU -> metal, anything else -> fiat pair).
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, Optional


class InstrumentClass(str, Enum):
    FIAT = "fiat"
    CRYPTO = "crypto"
    METAL = "metal"


CONTRACT_SIZES: Dict[InstrumentClass, Decimal] = {
    InstrumentClass.FIAT: Decimal("100000"),
    InstrumentClass.CRYPTO: Decimal("1"),
    InstrumentClass.METAL: Decimal("100"),
}

# Quote currencies stripped to find the base asset, longest first
QUOTE_ASSETS = ("USDT", "USDC", "BUSD", "USD", "EUR")

CRYPTO_ASSETS = frozenset({
    "BTC", "ETH", "SOL", "XRP", "LTC", "DOGE", "ADA", "BNB", "DOT",
    "AVAX", "MATIC", "LINK", "UNI", "BCH", "ALGO", "ETC", "TRX",
    "SHIB", "ATOM", "XLM", "USDT", "USDC",
})

METAL_ASSETS = frozenset({"XAU", "XAG", "XPT", "XPD"})

# Explicit symbol -> class entries that the rules above would get wrong
INSTRUMENT_TABLE: Dict[str, InstrumentClass] = {
    "GOLD": InstrumentClass.METAL,
    "SILVER": InstrumentClass.METAL,
    "EURUSD": InstrumentClass.FIAT,
    "GBPUSD": InstrumentClass.FIAT,
    "USDJPY": InstrumentClass.FIAT,
    "USDCHF": InstrumentClass.FIAT,
    "AUDUSD": InstrumentClass.FIAT,
    "USDCAD": InstrumentClass.FIAT,
    "NZDUSD": InstrumentClass.FIAT,
}


def normalize_symbol(symbol: str) -> str:
    """'btc/usdt' -> 'BTCUSDT'"""
    return (
        symbol.strip()
        .upper()
        .replace("/", "")
        .replace("-", "")
        .replace("_", "")
    )


def base_asset(symbol: str) -> Optional[str]:
    """Strip a known quote currency; ``None`` if the symbol has none."""
    normalized = normalize_symbol(symbol)
    for quote in QUOTE_ASSETS:
        if normalized.endswith(quote) and len(normalized) > len(quote):
            return normalized[: -len(quote)]
    return None


def legacy_class(symbol: str) -> InstrumentClass:
    """Substring-only classification used before the symbol table existed."""
    normalized = normalize_symbol(symbol)
    if "BTC" in normalized or "ETH" in normalized:
        return InstrumentClass.CRYPTO
    if "XAU" in normalized:
        return InstrumentClass.METAL
    return InstrumentClass.FIAT


def classify(symbol: str) -> InstrumentClass:
    """Resolve the instrument class of a symbol."""
    normalized = normalize_symbol(symbol)

    explicit = INSTRUMENT_TABLE.get(normalized)
    if explicit is not None:
        return explicit

    base = base_asset(normalized)
    if base in CRYPTO_ASSETS:
        return InstrumentClass.CRYPTO
    if base in METAL_ASSETS:
        return InstrumentClass.METAL

    return legacy_class(normalized)


def contract_size(symbol: str) -> Decimal:
    """Units per lot for the symbol's instrument class."""
    return CONTRACT_SIZES[classify(symbol)]


def register_instrument(symbol: str, instrument_class: InstrumentClass) -> None:
    """Add or override an explicit table entry."""
    INSTRUMENT_TABLE[normalize_symbol(symbol)] = instrument_class
