"""
Core dependencies for FastAPI routes.

Provides the caller identity (trusted gateway headers) and the services
wired on ``app.state`` during startup.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from app.domain.models.modification import Operator, OperatorRole
from app.domain.services.lifecycle_manager import PositionLifecycleManager
from app.domain.services.modification_service import PositionModificationService
from app.repositories.position_store import PositionStore
from app.services.price_feed_service import PriceFeedAdapter
from app.utils.logger import get_logger

logger = get_logger(__name__)

# Role names accepted from the gateway
ROLE_ALIASES = {
    "admin": OperatorRole.ADMIN,
    "mentor": OperatorRole.MENTOR,
    "maestro": OperatorRole.MENTOR,
    "user": OperatorRole.USER,
}


async def get_operator(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
    x_user_name: Optional[str] = Header(default=None, alias="X-User-Name"),
) -> Operator:
    """
    Resolve the caller from gateway headers.

    Raises:
        HTTPException: 401 without a user id, 403 for an unknown role

    Example:
        @router.get("/positions")
        async def list_positions(operator: Operator = Depends(get_operator)):
            ...
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    role = ROLE_ALIASES.get((x_user_role or "user").strip().lower())
    if role is None:
        logger.warning(f"Rejected unknown role {x_user_role!r} for {x_user_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unknown role",
        )

    return Operator(id=x_user_id, display_name=x_user_name or "", role=role)


async def require_privileged_operator(
    operator: Operator = Depends(get_operator),
) -> Operator:
    """Only admins and mentors pass."""
    if not operator.is_privileged:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return operator


async def require_admin(
    operator: Operator = Depends(get_operator),
) -> Operator:
    """Only admins pass."""
    if operator.role != OperatorRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return operator


def get_lifecycle_manager(request: Request) -> PositionLifecycleManager:
    return request.app.state.lifecycle_manager


def get_modification_service(request: Request) -> PositionModificationService:
    return request.app.state.modification_service


def get_price_feed(request: Request) -> PriceFeedAdapter:
    return request.app.state.price_feed


def get_position_store(request: Request) -> PositionStore:
    return request.app.state.position_store
