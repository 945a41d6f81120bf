"""
Leverage Settings Schemas
"""

from typing import Dict

from pydantic import BaseModel, Field

from app.domain.instruments import InstrumentClass


class LeverageCapUpdate(BaseModel):
    leverage: int = Field(..., description="New cap for the instrument class")


class LeverageCapResponse(BaseModel):
    instrument_class: InstrumentClass
    leverage: int


class LeverageSettingsResponse(BaseModel):
    min_leverage: int
    max_leverage: int
    caps: Dict[InstrumentClass, int]
