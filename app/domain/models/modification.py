"""
Modification Domain Models

Operators, visibility scopes and the append-only audit record written for
every field an operator changes on a position.
"""

from typing import Any, FrozenSet, List, Optional
from datetime import datetime, timezone
from enum import Enum
from pydantic import ConfigDict, Field

from app.shared.models import DomainModel, new_object_id


# ==================== ENUMS ====================

class OperatorRole(str, Enum):
    """Roles of the caller acting on positions"""
    ADMIN = "admin"
    MENTOR = "mentor"
    USER = "user"


class ModifiableField(str, Enum):
    """Position fields an operator may override"""
    CURRENT_PRICE = "current_price"
    OPEN_PRICE = "open_price"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    AMOUNT = "amount"
    STAKE = "stake"
    LEVERAGE = "leverage"
    DURATION_VALUE = "duration_value"
    DURATION_UNIT = "duration_unit"
    MARKET_COLOR = "market_color"


# ==================== OPERATOR & SCOPE ====================

class Operator(DomainModel):
    """Caller identity as supplied by the gateway."""

    id: str
    display_name: str = ""
    role: OperatorRole = OperatorRole.USER

    @property
    def is_privileged(self) -> bool:
        return self.role in (OperatorRole.ADMIN, OperatorRole.MENTOR)


class OwnerScope(DomainModel):
    """
    Set of owner ids a query may see.

    ``owner_ids = None`` means unrestricted (admin). An empty set sees nothing.
    """

    owner_ids: Optional[FrozenSet[str]] = None

    @classmethod
    def everyone(cls) -> "OwnerScope":
        return cls(owner_ids=None)

    @classmethod
    def only(cls, owner_ids) -> "OwnerScope":
        return cls(owner_ids=frozenset(owner_ids))

    @property
    def is_unrestricted(self) -> bool:
        return self.owner_ids is None

    def allows(self, owner_id: str) -> bool:
        return self.owner_ids is None or owner_id in self.owner_ids


# ==================== AUDIT RECORD ====================

class PositionModification(DomainModel):
    """
    Immutable audit record: one per changed field per request.

    Records of one request share ``reason`` and ``timestamp``.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    id: str = Field(default_factory=new_object_id, alias="_id")
    position_id: str
    owner_id: str
    field: ModifiableField
    old_value: Any = None
    new_value: Any = None
    reason: str = Field(..., min_length=1)
    actor_id: str
    actor_name: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ModificationOutcome(DomainModel):
    """Result of a modification request: records written or errors found."""

    modifications: List[PositionModification] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return not self.errors and bool(self.modifications)
