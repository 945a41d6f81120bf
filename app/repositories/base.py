"""
Base Repository

Abstract base class for repository pattern implementation.
Provides common CRUD operations, document conversion and optional
multi-document transactions.
"""

from abc import ABC
from contextlib import asynccontextmanager
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pydantic import BaseModel


def to_document(value: Any) -> Any:
    """
    Convert domain values into BSON-storable ones.

    Decimal -> float, Enum -> value, sets -> lists, models -> dicts (by alias).
    """
    if isinstance(value, BaseModel):
        return to_document(value.model_dump(by_alias=True))
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_document(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_document(item) for item in value]
    return value


class BaseRepository(ABC):
    """
    Abstract base repository class.

    Provides common CRUD operations that all repositories share.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: str,
        use_transactions: bool = True,
    ):
        """
        Initialize repository.

        Args:
            db: MongoDB database instance
            collection_name: Name of the collection
            use_transactions: Wrap multi-document writes in a transaction
                (requires a replica set)
        """
        self.db = db
        self.collection_name = collection_name
        self.collection = db[collection_name]
        self.use_transactions = use_transactions

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
        """
        Yield a session inside a transaction, or None when disabled.

        Raising inside the block aborts the transaction.
        """
        if not self.use_transactions:
            yield None
            return

        async with await self.db.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def find_one(
        self,
        filter: Dict[str, Any],
        projection: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Find a single document.

        Args:
            filter: MongoDB filter dictionary
            projection: Optional projection dictionary
            session: Optional transaction session

        Returns:
            Document dict or None if not found
        """
        return await self.collection.find_one(filter, projection, session=session)

    async def find(
        self,
        filter: Dict[str, Any],
        projection: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort: Optional[List[tuple]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Find multiple documents.

        Args:
            filter: MongoDB filter dictionary
            projection: Optional projection dictionary
            skip: Number of documents to skip
            limit: Maximum number of documents to return
            sort: List of (field, direction) tuples for sorting

        Returns:
            List of document dicts
        """
        cursor = self.collection.find(filter, projection)

        if sort:
            cursor = cursor.sort(sort)

        if skip > 0:
            cursor = cursor.skip(skip)

        if limit > 0:
            cursor = cursor.limit(limit)

        return await cursor.to_list(length=limit if limit > 0 else None)

    async def insert_one(
        self,
        document: Dict[str, Any],
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> Any:
        """
        Insert a single document.

        Returns:
            Inserted document ID
        """
        result = await self.collection.insert_one(document, session=session)
        return result.inserted_id
