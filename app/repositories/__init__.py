"""
Repositories Module

Repository pattern implementation for database access.
PositionStore is the boundary the domain services depend on;
PositionRepository is its MongoDB implementation.
"""

from app.repositories.base import BaseRepository, to_document
from app.repositories.position_store import PositionStore
from app.repositories.position_repository import PositionRepository

__all__ = [
    "BaseRepository",
    "to_document",
    "PositionStore",
    "PositionRepository",
]
