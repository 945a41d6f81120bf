"""
Position Repository

MongoDB implementation of the PositionStore boundary.

Collections:
- positions: one document per position (``_id`` is the position id)
- position_modifications: append-only audit records
- users: owner balances (``balance`` field)
- mentor_assignments: ``{mentor_id, user_id}`` pairs
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from app.domain.models.modification import OwnerScope, PositionModification
from app.domain.models.position import (
    ACTIVE_STATUSES,
    CloseReason,
    Position,
    PositionStatus,
)
from app.repositories.base import BaseRepository, to_document
from app.repositories.position_store import PositionStore
from app.shared.exceptions import (
    AppException,
    DatabaseError,
    InsufficientFundsError,
    PositionConflictError,
    PositionNotFoundError,
    UserNotFoundError,
)
from app.shared.models import OperationResult
from app.utils.logger import get_logger

logger = get_logger(__name__)

ACTIVE_STATUS_VALUES = [s.value for s in ACTIVE_STATUSES]


def user_filter(owner_id: str) -> Dict[str, Any]:
    """Users may be keyed by ObjectId or by plain string id."""
    if ObjectId.is_valid(owner_id):
        return {"_id": {"$in": [ObjectId(owner_id), owner_id]}}
    return {"_id": owner_id}


def scope_filter(scope: OwnerScope) -> Dict[str, Any]:
    if scope.is_unrestricted:
        return {}
    return {"owner_id": {"$in": sorted(scope.owner_ids)}}


class PositionRepository(BaseRepository, PositionStore):
    """
    Repository for positions, their audit trail and owner balances.

    Reads raise DatabaseError on driver failures; writes return
    OperationResult and never raise.
    """

    def __init__(self, db: AsyncIOMotorDatabase, use_transactions: bool = True):
        super().__init__(db, "positions", use_transactions=use_transactions)
        self.modifications = db["position_modifications"]
        self.users = db["users"]
        self.mentor_assignments = db["mentor_assignments"]

    # ==================== READS ====================

    async def list_positions(
        self,
        scope: OwnerScope,
        statuses: Optional[Sequence[PositionStatus]] = None,
    ) -> List[Position]:
        filter: Dict[str, Any] = scope_filter(scope)
        if statuses:
            filter["status"] = {"$in": [PositionStatus(s).value for s in statuses]}

        try:
            docs = await self.find(filter, sort=[("open_time", -1)])
        except PyMongoError as e:
            logger.error(f"Failed to list positions: {e}")
            raise DatabaseError("Failed to load positions")
        return [Position.model_validate(doc) for doc in docs]

    async def get_position(self, position_id: str, scope: OwnerScope) -> Optional[Position]:
        filter = {"_id": position_id, **scope_filter(scope)}
        try:
            doc = await self.find_one(filter)
        except PyMongoError as e:
            logger.error(f"Failed to load position {position_id}: {e}")
            raise DatabaseError("Failed to load position")
        return Position.model_validate(doc) if doc else None

    async def list_modifications(
        self,
        scope: OwnerScope,
        position_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PositionModification]:
        filter: Dict[str, Any] = scope_filter(scope)
        if position_id:
            filter["position_id"] = position_id

        try:
            cursor = self.modifications.find(filter).sort([("timestamp", -1)])
            if offset > 0:
                cursor = cursor.skip(offset)
            cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            logger.error(f"Failed to list modifications: {e}")
            raise DatabaseError("Failed to load modification history")
        return [PositionModification.model_validate(doc) for doc in docs]

    async def get_balance(self, owner_id: str) -> Decimal:
        try:
            user = await self.users.find_one(user_filter(owner_id), {"balance": 1})
        except PyMongoError as e:
            logger.error(f"Failed to load balance of {owner_id}: {e}")
            raise DatabaseError("Failed to load balance")
        if user is None:
            raise UserNotFoundError()
        return Decimal(str(user.get("balance", 0)))

    async def get_assigned_client_ids(self, mentor_id: str) -> List[str]:
        try:
            cursor = self.mentor_assignments.find({"mentor_id": mentor_id}, {"user_id": 1})
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"Failed to load assignments of mentor {mentor_id}: {e}")
            raise DatabaseError("Failed to load mentor assignments")
        return [str(doc["user_id"]) for doc in docs]

    # ==================== WRITES ====================

    async def open_position(self, position: Position) -> OperationResult:
        amount = float(position.amount)
        try:
            async with self.transaction() as session:
                debit = await self.users.update_one(
                    {**user_filter(position.owner_id), "balance": {"$gte": amount}},
                    {"$inc": {"balance": -amount}},
                    session=session,
                )
                if debit.matched_count == 0:
                    raise InsufficientFundsError()
                await self.insert_one(to_document(position), session=session)
        except AppException as e:
            return OperationResult.from_exception(e)
        except PyMongoError as e:
            logger.error(f"Failed to open position {position.id}: {e}")
            return OperationResult.from_exception(DatabaseError("Failed to open position"))

        logger.debug(f"Stored position {position.id}")
        return OperationResult.ok("Position opened", data=position, status_code=201)

    async def close_position(
        self,
        position_id: str,
        close_price: Decimal,
        profit: Decimal,
        amount: Decimal,
        status: PositionStatus = PositionStatus.CLOSED,
        reason: CloseReason = CloseReason.MANUAL,
    ) -> OperationResult:
        now = datetime.now(timezone.utc)
        try:
            async with self.transaction() as session:
                doc = await self.collection.find_one_and_update(
                    {"_id": position_id, "status": {"$in": ACTIVE_STATUS_VALUES}},
                    {"$set": {
                        "status": status.value,
                        "current_price": float(close_price),
                        "close_price": float(close_price),
                        "profit": float(profit),
                        "close_time": now,
                        "close_reason": reason.value,
                        "updated_at": now,
                    }},
                    session=session,
                    return_document=ReturnDocument.AFTER,
                )
                if doc is None:
                    await self._raise_missing_or_conflict(position_id, session)

                user = await self.users.find_one_and_update(
                    user_filter(doc["owner_id"]),
                    {"$inc": {"balance": float(amount + profit)}},
                    session=session,
                    return_document=ReturnDocument.AFTER,
                )
                if user is None:
                    raise UserNotFoundError()
        except AppException as e:
            return OperationResult.from_exception(e)
        except PyMongoError as e:
            logger.error(f"Failed to close position {position_id}: {e}")
            return OperationResult.from_exception(DatabaseError("Failed to close position"))

        return OperationResult.ok(
            "Position closed",
            data={"new_balance": Decimal(str(user.get("balance", 0)))},
        )

    async def modify_position(
        self,
        position_id: str,
        changes: Dict[str, Any],
        records: List[PositionModification],
    ) -> OperationResult:
        try:
            async with self.transaction() as session:
                result = await self.collection.update_one(
                    {"_id": position_id, "status": PositionStatus.OPEN.value},
                    {"$set": to_document(changes)},
                    session=session,
                )
                if result.matched_count == 0:
                    await self._raise_missing_or_conflict(position_id, session)

                if records:
                    await self.modifications.insert_many(
                        [to_document(record) for record in records],
                        session=session,
                    )
                doc = await self.find_one({"_id": position_id}, session=session)
        except AppException as e:
            return OperationResult.from_exception(e)
        except PyMongoError as e:
            logger.error(f"Failed to modify position {position_id}: {e}")
            return OperationResult.from_exception(DatabaseError("Failed to modify position"))

        return OperationResult.ok("Position modified", data=Position.model_validate(doc))

    async def _raise_missing_or_conflict(self, position_id: str, session) -> None:
        existing = await self.find_one({"_id": position_id}, {"status": 1}, session=session)
        if existing is None:
            raise PositionNotFoundError()
        raise PositionConflictError(f"Position is {existing.get('status')}")
