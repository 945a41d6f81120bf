"""
Position Management Router

FastAPI endpoints for a trader's own positions: open, list, inspect,
close, and the aggregate risk snapshot.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.dependencies import (
    get_lifecycle_manager,
    get_operator,
    get_position_store,
    get_price_feed,
)
from app.core.responses import error_json_response, result_response, success_response
from app.domain.models.modification import Operator, OwnerScope
from app.domain.models.position import PositionStatus, TERMINAL_STATUSES
from app.domain.services.lifecycle_manager import OpenPositionParams, PositionLifecycleManager
from app.modules.positions.schemas import OpenPositionRequest, position_payload
from app.repositories.position_store import PositionStore
from app.services.price_feed_service import PriceFeedAdapter
from app.shared.exceptions import AppException
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/positions", tags=["Positions"])


# ==================== LIST POSITIONS ====================

@router.get("", status_code=status.HTTP_200_OK)
async def list_positions(
    status_filter: Optional[PositionStatus] = Query(default=None, alias="status"),
    operator: Operator = Depends(get_operator),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
    store: PositionStore = Depends(get_position_store),
):
    """
    List the caller's positions.

    Active positions come from the live registry; closed and liquidated
    ones from the store.
    """
    try:
        if status_filter in TERMINAL_STATUSES:
            positions = await store.list_positions(
                OwnerScope.only([operator.id]),
                [status_filter],
            )
        else:
            positions = manager.list_positions(owner_id=operator.id)
            if status_filter is not None:
                positions = [p for p in positions if p.status == status_filter]

        return success_response(
            status_code=status.HTTP_200_OK,
            message="Positions retrieved successfully",
            data=[position_payload(p) for p in positions],
        )
    except AppException as e:
        return error_json_response(e.status_code, "Failed to retrieve positions", e.code, e.message)


# ==================== OPEN POSITION ====================

@router.post("", status_code=status.HTTP_201_CREATED)
async def open_position(
    request: OpenPositionRequest,
    operator: Operator = Depends(get_operator),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
    feed: PriceFeedAdapter = Depends(get_price_feed),
):
    """
    Open a position for the caller.

    Without an explicit ``open_price`` the current feed price is used.
    """
    if request.open_price is None:
        await feed.get_current_prices([request.instrument])

    params = OpenPositionParams(owner_id=operator.id, **request.model_dump())
    result = await manager.open(params)
    if not result.success:
        return result_response(result)

    position = manager.get(result.data)
    return result_response(result, data=position_payload(position) if position else {"id": result.data})


# ==================== RISK SNAPSHOT ====================

@router.get("/risk", status_code=status.HTTP_200_OK)
async def get_risk_snapshot(
    operator: Operator = Depends(get_operator),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Free margin, margin level and totals over the caller's active positions."""
    snapshot = await manager.risk_snapshot(operator.id)
    return success_response(
        status_code=status.HTTP_200_OK,
        message="Risk snapshot retrieved successfully",
        data=snapshot.to_dict(),
    )


# ==================== GET POSITION ====================

@router.get("/{position_id}", status_code=status.HTTP_200_OK)
async def get_position(
    position_id: str,
    operator: Operator = Depends(get_operator),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
    store: PositionStore = Depends(get_position_store),
):
    """Get one of the caller's positions by ID"""
    try:
        position = manager.get(position_id)
        if position is None or position.owner_id != operator.id:
            position = await store.get_position(position_id, OwnerScope.only([operator.id]))

        if position is None:
            return error_json_response(
                status.HTTP_404_NOT_FOUND,
                "Position not found",
                "POSITION_NOT_FOUND",
                f"Position {position_id} not found",
            )

        return success_response(
            status_code=status.HTTP_200_OK,
            message="Position retrieved successfully",
            data=position_payload(position),
        )
    except AppException as e:
        return error_json_response(e.status_code, "Failed to retrieve position", e.code, e.message)


# ==================== CLOSE POSITION ====================

@router.post("/{position_id}/close", status_code=status.HTTP_200_OK)
async def close_position(
    position_id: str,
    operator: Operator = Depends(get_operator),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Close one of the caller's positions at its last known price."""
    result = await manager.close(position_id, scope=OwnerScope.only([operator.id]))
    return result_response(result)
