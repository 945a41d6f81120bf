"""
Leverage Limits

Global leverage bounds plus an optional cap per instrument class. A class
without a cap is bounded by the global maximum only. Caps are changed at
runtime by admins and always stay inside the global bounds.
"""

from typing import Dict, Mapping, Optional

from app.domain.instruments import InstrumentClass, classify
from app.shared.exceptions import ValidationError


class LeverageLimits:
    """
    Leverage Limits

    Usage:
        limits = LeverageLimits(1, 1000, {InstrumentClass.CRYPTO: 20})
        limits.check("BTCUSDT", 10)
        limits.set_cap(InstrumentClass.METAL, 50)
    """

    def __init__(
        self,
        min_leverage: int = 1,
        max_leverage: int = 1000,
        caps: Optional[Mapping[InstrumentClass, int]] = None,
    ):
        if min_leverage < 1 or max_leverage < min_leverage:
            raise ValueError("Leverage bounds must satisfy 1 <= min <= max")
        self.min_leverage = min_leverage
        self.max_leverage = max_leverage
        self._caps: Dict[InstrumentClass, int] = {}
        for instrument_class, cap in (caps or {}).items():
            self.set_cap(InstrumentClass(instrument_class), cap)

    def cap_for(self, instrument_class: InstrumentClass) -> int:
        return self._caps.get(instrument_class, self.max_leverage)

    def max_for(self, instrument: str) -> int:
        """Highest leverage allowed on ``instrument``."""
        return self.cap_for(classify(instrument))

    def set_cap(self, instrument_class: InstrumentClass, cap: int) -> int:
        if isinstance(cap, bool) or not isinstance(cap, int):
            raise ValidationError("Leverage cap must be a whole number")
        if not (self.min_leverage <= cap <= self.max_leverage):
            raise ValidationError(
                f"Leverage cap must be between {self.min_leverage} and {self.max_leverage}"
            )
        self._caps[instrument_class] = cap
        return cap

    def all_caps(self) -> Dict[InstrumentClass, int]:
        """Effective cap of every instrument class."""
        return {c: self.cap_for(c) for c in InstrumentClass}

    def check(self, instrument: str, leverage: int) -> None:
        """Raise ValidationError when ``leverage`` is out of range for ``instrument``."""
        instrument_class = classify(instrument)
        upper = self.cap_for(instrument_class)
        if not (self.min_leverage <= leverage <= upper):
            raise ValidationError(
                f"Leverage must be between {self.min_leverage} and {upper} "
                f"for {instrument_class.value} instruments"
            )
