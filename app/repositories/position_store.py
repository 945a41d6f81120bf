"""
Position Store

Persistence boundary used by the lifecycle manager and the modification
service. Every write returns an OperationResult; implementations convert
their own failures instead of raising across this boundary.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from app.domain.models.modification import OwnerScope, PositionModification
from app.domain.models.position import CloseReason, Position, PositionStatus
from app.shared.models import OperationResult


class PositionStore(ABC):
    """
    Abstract position store.

    Implementations: PositionRepository (MongoDB), in-memory fakes in tests.
    """

    # ==================== READS ====================

    @abstractmethod
    async def list_positions(
        self,
        scope: OwnerScope,
        statuses: Optional[Sequence[PositionStatus]] = None,
    ) -> List[Position]:
        """Positions visible in ``scope``, optionally filtered by status."""

    @abstractmethod
    async def get_position(self, position_id: str, scope: OwnerScope) -> Optional[Position]:
        """A single position, or None if missing or outside ``scope``."""

    @abstractmethod
    async def list_modifications(
        self,
        scope: OwnerScope,
        position_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PositionModification]:
        """Audit records, newest first."""

    @abstractmethod
    async def get_balance(self, owner_id: str) -> Decimal:
        """Current balance of the owner."""

    @abstractmethod
    async def get_assigned_client_ids(self, mentor_id: str) -> List[str]:
        """Owner ids assigned to a mentor."""

    # ==================== WRITES ====================

    @abstractmethod
    async def open_position(self, position: Position) -> OperationResult:
        """
        Persist a new position and debit ``position.amount`` from the owner.

        Success data: the stored Position.
        """

    @abstractmethod
    async def close_position(
        self,
        position_id: str,
        close_price: Decimal,
        profit: Decimal,
        amount: Decimal,
        status: PositionStatus = PositionStatus.CLOSED,
        reason: CloseReason = CloseReason.MANUAL,
    ) -> OperationResult:
        """
        Finalize a position and credit ``amount + profit`` to the owner.

        Success data: ``{"new_balance": Decimal}``.
        Fails with POSITION_CONFLICT when the position is already terminal.
        """

    @abstractmethod
    async def modify_position(
        self,
        position_id: str,
        changes: Dict[str, Any],
        records: List[PositionModification],
    ) -> OperationResult:
        """
        Apply ``changes`` and append ``records`` atomically.

        Success data: the updated Position.
        """
