"""
Admin Position Schemas

Pydantic schemas for operator modification requests and audit responses.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.domain.models.modification import PositionModification


class FieldChange(BaseModel):
    """One entry of the admin panel's change list"""
    field: str
    new_value: Any = Field(default=None, alias="newValue")
    old_value: Any = Field(default=None, alias="oldValue")

    model_config = ConfigDict(populate_by_name=True)


class ModifyPositionRequest(BaseModel):
    """
    Modification request.

    Either ``changes`` (field -> new value) or ``modifications`` (list of
    field changes); both are merged, list entries last.
    """
    changes: Dict[str, Any] = Field(default_factory=dict)
    modifications: Optional[List[FieldChange]] = None
    reason: Optional[str] = None

    def new_values(self) -> Dict[str, Any]:
        values = dict(self.changes)
        for change in self.modifications or []:
            values[change.field] = change.new_value
        return values


def modification_payload(record: PositionModification) -> dict:
    return record.model_dump(mode="json")
