"""
Admin Position Router

Endpoints for admins (all positions) and mentors (assigned clients only).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.dependencies import (
    get_lifecycle_manager,
    get_modification_service,
    get_position_store,
    require_privileged_operator,
)
from app.core.responses import error_json_response, result_response, success_response
from app.domain.models.modification import Operator
from app.domain.models.position import PositionStatus, TERMINAL_STATUSES
from app.domain.services.lifecycle_manager import PositionLifecycleManager
from app.domain.services.modification_service import PositionModificationService
from app.modules.admin_positions.schemas import ModifyPositionRequest, modification_payload
from app.modules.positions.schemas import position_payload
from app.repositories.position_store import PositionStore
from app.shared.exceptions import AppException
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/positions", tags=["Admin Positions"])


# ==================== LIST POSITIONS ====================

@router.get("", status_code=status.HTTP_200_OK)
async def list_positions(
    status_filter: Optional[PositionStatus] = Query(default=None, alias="status"),
    owner_id: Optional[str] = Query(default=None),
    operator: Operator = Depends(require_privileged_operator),
    service: PositionModificationService = Depends(get_modification_service),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
    store: PositionStore = Depends(get_position_store),
):
    """
    List positions visible to the operator.

    Mentors only see positions of their assigned clients.
    """
    try:
        scope = await service.resolve_scope(operator)
        if status_filter in TERMINAL_STATUSES:
            positions = await store.list_positions(scope, [status_filter])
        else:
            positions = manager.list_positions(scope=scope)
            if status_filter is not None:
                positions = [p for p in positions if p.status == status_filter]

        if owner_id:
            positions = [p for p in positions if p.owner_id == owner_id]

        return success_response(
            status_code=status.HTTP_200_OK,
            message="Positions retrieved successfully",
            data=[position_payload(p) for p in positions],
        )
    except AppException as e:
        return error_json_response(e.status_code, "Failed to retrieve positions", e.code, e.message)


# ==================== MODIFICATION HISTORY ====================

@router.get("/modifications", status_code=status.HTTP_200_OK)
async def list_modifications(
    position_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    operator: Operator = Depends(require_privileged_operator),
    service: PositionModificationService = Depends(get_modification_service),
):
    """Audit records visible to the operator, newest first."""
    result = await service.history(operator, position_id=position_id, limit=limit, offset=offset)
    if not result.success:
        return result_response(result)

    return success_response(
        status_code=status.HTTP_200_OK,
        message="Modifications retrieved successfully",
        data={
            "items": [modification_payload(r) for r in result.data],
            "limit": limit,
            "offset": offset,
        },
    )


# ==================== MODIFY POSITION ====================

@router.post("/{position_id}/modify", status_code=status.HTTP_200_OK)
async def modify_position(
    position_id: str,
    request: ModifyPositionRequest,
    operator: Operator = Depends(require_privileged_operator),
    service: PositionModificationService = Depends(get_modification_service),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Override fields of an open position.

    A non-empty reason is required; one audit record is written per
    changed field.
    """
    result = await service.propose(operator, position_id, request.new_values(), request.reason)
    if not result.success:
        return result_response(result)

    position = manager.get(position_id)
    return result_response(
        result,
        data={
            "modifications": [modification_payload(r) for r in result.data.modifications],
            "position": position_payload(position) if position else None,
        },
    )


# ==================== LIQUIDATE POSITION ====================

@router.post("/{position_id}/liquidate", status_code=status.HTTP_200_OK)
async def liquidate_position(
    position_id: str,
    operator: Operator = Depends(require_privileged_operator),
    service: PositionModificationService = Depends(get_modification_service),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Force-close a position in the operator's scope."""
    try:
        scope = await service.resolve_scope(operator)
    except AppException as e:
        return error_json_response(e.status_code, "Operation failed", e.code, e.message)

    result = await manager.liquidate(position_id, scope=scope)
    if result.success:
        logger.info(f"Position {position_id} liquidated by {operator.id}")
    return result_response(result)
