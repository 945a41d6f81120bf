"""
Shared Models

Base classes for domain models and the tagged result returned across the
store/service boundary.
"""

from decimal import Decimal
from typing import Any, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict

from app.shared.exceptions import AppException


def new_object_id() -> str:
    """Generate an opaque, unique document id."""
    return str(ObjectId())


class DomainModel(BaseModel):
    """
    Base domain model for all domain entities.

    Provides:
    - Proper Pydantic v2 configuration
    - Assignment validation (keeps Decimal fields Decimal after mutation)
    - Population by field name or Mongo alias
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
        validate_assignment=True,
        json_encoders={
            ObjectId: str,
            Decimal: str,
        },
    )


class OperationResult(BaseModel):
    """
    Tagged success/failure result.

    Every write operation of the core returns one of these instead of raising.
    Callers branch on ``success`` and surface ``message`` to the user.

    Usage:
        result = await manager.close(position_id)
        if not result.success:
            logger.warning(result.message)
    """

    success: bool
    message: str
    code: str = "OK"
    status_code: int = 200
    retryable: bool = False
    data: Optional[Any] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def ok(cls, message: str, data: Any = None, status_code: int = 200) -> "OperationResult":
        return cls(success=True, message=message, data=data, status_code=status_code)

    @classmethod
    def fail(
        cls,
        message: str,
        code: str = "OPERATION_FAILED",
        status_code: int = 400,
        retryable: bool = False,
        data: Any = None,
    ) -> "OperationResult":
        return cls(
            success=False,
            message=message,
            code=code,
            status_code=status_code,
            retryable=retryable,
            data=data,
        )

    @classmethod
    def from_exception(cls, exc: AppException, data: Any = None) -> "OperationResult":
        """Convert an application exception into a failure result."""
        return cls.fail(
            message=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            retryable=exc.retryable,
            data=data,
        )
