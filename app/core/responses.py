"""
Standardized response helpers for API endpoints.

All API responses follow a consistent format for success and error cases.
"""

from decimal import Decimal
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.shared.models import OperationResult


def success_response(
    status_code: int,
    message: str,
    data: Any = None
) -> dict:
    """
    Create a success response.
    
    Args:
        status_code: HTTP status code (200, 201, etc.)
        message: Success message
        data: Response data
        
    Returns:
        dict: Standardized success response
        
    Example:
        >>> success_response(201, "Position opened", {"id": "123", "instrument": "BTCUSDT"})
        {
            "status_code": 201,
            "message": "Position opened",
            "data": {"id": "123", "instrument": "BTCUSDT"},
            "error": None
        }
    """
    return {
        "status_code": status_code,
        "message": message,
        "data": data,
        "error": None
    }


def error_response(
    status_code: int,
    message: str,
    error_code: str,
    error_message: str
) -> dict:
    """
    Create an error response.
    
    Args:
        status_code: HTTP status code (400, 401, 403, 404, etc.)
        message: General error message
        error_code: Specific error code
        error_message: Detailed error message
        
    Returns:
        dict: Standardized error response
        
    Example:
        >>> error_response(400, "Operation failed", "NO_CHANGES_DETECTED", "No changes detected")
        {
            "status_code": 400,
            "message": "Operation failed",
            "data": None,
            "error": {
                "code": "NO_CHANGES_DETECTED",
                "message": "No changes detected"
            }
        }
    """
    return {
        "status_code": status_code,
        "message": message,
        "data": None,
        "error": {
            "code": error_code,
            "message": error_message
        }
    }


def error_json_response(status_code: int, message: str, error_code: str, error_message: str) -> JSONResponse:
    """Helper to create JSON error response with proper status code."""
    response = error_response(
        status_code=status_code,
        message=message,
        error_code=error_code,
        error_message=error_message
    )
    return JSONResponse(status_code=status_code, content=response)


def result_response(result: OperationResult, data: Any = None) -> JSONResponse:
    """
    Render an OperationResult in the standard envelope.

    Args:
        result: Result returned by a service
        data: Payload to send on success (defaults to ``result.data``)

    Returns:
        JSONResponse with the result's status code
    """
    if not result.success:
        return error_json_response(
            status_code=result.status_code,
            message="Operation failed",
            error_code=result.code,
            error_message=result.message,
        )

    payload = result.data if data is None else data
    return JSONResponse(
        status_code=result.status_code,
        content=jsonable_encoder(
            success_response(result.status_code, result.message, payload),
            custom_encoder={Decimal: float},
        ),
    )
