"""
Leverage Settings Router

Admins and mentors read the caps; only admins change them. A cap applies
to new positions and to leverage overrides, never to positions already open.
"""

from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_lifecycle_manager, require_admin, require_privileged_operator
from app.core.responses import error_json_response, success_response
from app.domain.instruments import InstrumentClass
from app.domain.models.modification import Operator
from app.domain.services.lifecycle_manager import PositionLifecycleManager
from app.modules.admin_leverage.schemas import (
    LeverageCapResponse,
    LeverageCapUpdate,
    LeverageSettingsResponse,
)
from app.shared.exceptions import AppException
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/leverage", tags=["Admin Leverage"])


# ==================== READ CAPS ====================

@router.get("", status_code=status.HTTP_200_OK)
async def get_leverage_settings(
    operator: Operator = Depends(require_privileged_operator),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Global bounds and the effective cap of every instrument class."""
    limits = manager.leverage_limits
    settings = LeverageSettingsResponse(
        min_leverage=limits.min_leverage,
        max_leverage=limits.max_leverage,
        caps=limits.all_caps(),
    )
    return success_response(
        status_code=status.HTTP_200_OK,
        message="Leverage settings retrieved successfully",
        data=settings.model_dump(mode="json"),
    )


@router.get("/{instrument_class}", status_code=status.HTTP_200_OK)
async def get_leverage_cap(
    instrument_class: InstrumentClass,
    operator: Operator = Depends(require_privileged_operator),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
):
    cap = LeverageCapResponse(
        instrument_class=instrument_class,
        leverage=manager.leverage_limits.cap_for(instrument_class),
    )
    return success_response(
        status_code=status.HTTP_200_OK,
        message="Leverage cap retrieved successfully",
        data=cap.model_dump(mode="json"),
    )


# ==================== UPDATE CAP ====================

@router.put("/{instrument_class}", status_code=status.HTTP_200_OK)
async def update_leverage_cap(
    instrument_class: InstrumentClass,
    request: LeverageCapUpdate,
    operator: Operator = Depends(require_admin),
    manager: PositionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Set the cap of one instrument class."""
    try:
        leverage = manager.leverage_limits.set_cap(instrument_class, request.leverage)
    except AppException as e:
        return error_json_response(e.status_code, "Failed to update leverage", e.code, e.message)

    logger.info(f"Leverage cap for {instrument_class.value} set to {leverage} by {operator.id}")
    cap = LeverageCapResponse(instrument_class=instrument_class, leverage=leverage)
    return success_response(
        status_code=status.HTTP_200_OK,
        message="Leverage cap updated successfully",
        data=cap.model_dump(mode="json"),
    )
