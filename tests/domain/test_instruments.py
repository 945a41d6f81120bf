"""
Instrument Classification Tests

Symbol normalization, instrument classes and contract sizes.
"""

import pytest
from decimal import Decimal

from app.domain import instruments
from app.domain.instruments import (
    InstrumentClass,
    base_asset,
    classify,
    contract_size,
    legacy_class,
    normalize_symbol,
    register_instrument,
)


# ==================== NORMALIZATION TESTS ====================

@pytest.mark.parametrize("raw", ["BTCUSDT", "btc/usdt", "BTC-USDT", " btc_usdt "])
def test_normalize_symbol(raw):
    assert normalize_symbol(raw) == "BTCUSDT"


def test_base_asset_strips_quote_currency():
    assert base_asset("SOLUSDT") == "SOL"
    assert base_asset("XAU/USD") == "XAU"
    assert base_asset("ETHEUR") == "ETH"


def test_base_asset_without_known_quote():
    assert base_asset("GOLD") is None
    assert base_asset("USDT") is None


# ==================== CLASSIFICATION TESTS ====================

@pytest.mark.parametrize("symbol,expected", [
    ("BTCUSDT", InstrumentClass.CRYPTO),
    ("ETH/USD", InstrumentClass.CRYPTO),
    ("SOLUSDT", InstrumentClass.CRYPTO),
    ("DOGEUSDT", InstrumentClass.CRYPTO),
    ("XAUUSD", InstrumentClass.METAL),
    ("XAGUSD", InstrumentClass.METAL),
    ("GOLD", InstrumentClass.METAL),
    ("EURUSD", InstrumentClass.FIAT),
    ("GBPUSD", InstrumentClass.FIAT),
])
def test_classify(symbol, expected):
    assert classify(symbol) == expected


def test_unknown_symbols_fall_back_to_substring_rules():
    """BTC/ETH anywhere -> crypto, XAU -> metal, everything else -> fiat pair"""
    assert classify("WBTCXYZ") == InstrumentClass.CRYPTO
    assert classify("XAUJPY") == InstrumentClass.METAL
    assert classify("NZDCHF") == InstrumentClass.FIAT


@pytest.mark.parametrize("symbol,table_class,legacy", [
    ("SOLUSDT", InstrumentClass.CRYPTO, InstrumentClass.FIAT),
    ("XRPUSDT", InstrumentClass.CRYPTO, InstrumentClass.FIAT),
    ("XAGUSD", InstrumentClass.METAL, InstrumentClass.FIAT),
    ("BTCUSDT", InstrumentClass.CRYPTO, InstrumentClass.CRYPTO),
    ("XAUUSD", InstrumentClass.METAL, InstrumentClass.METAL),
])
def test_table_reclassifies_symbols_the_substring_rules_missed(symbol, table_class, legacy):
    assert classify(symbol) == table_class
    assert legacy_class(symbol) == legacy


# ==================== CONTRACT SIZE TESTS ====================

def test_contract_sizes_per_class():
    assert contract_size("BTCUSDT") == Decimal("1")
    assert contract_size("XAUUSD") == Decimal("100")
    assert contract_size("EURUSD") == Decimal("100000")


def test_register_instrument_overrides_rules(monkeypatch):
    monkeypatch.setattr(instruments, "INSTRUMENT_TABLE", dict(instruments.INSTRUMENT_TABLE))

    register_instrument("ethbull/usd", InstrumentClass.FIAT)

    assert classify("ETHBULLUSD") == InstrumentClass.FIAT
    assert contract_size("ETHBULLUSD") == Decimal("100000")
