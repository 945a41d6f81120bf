"""
Custom exception classes for the application.

All custom exceptions inherit from base AppException for consistent error handling.
Services raise these internally; the service boundary converts them into
OperationResult failures so callers never see an exception.
"""


class AppException(Exception):
    """
    Base application exception.

    All custom exceptions should inherit from this class.

    Attributes:
        message: Error message
        code: Error code
        status_code: HTTP status code
        retryable: Whether the caller may retry the same request unchanged
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        status_code: int = 500
    ):
        """
        Initialize AppException.

        Args:
            message: Error message
            code: Error code
            status_code: HTTP status code
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


# Authorization Exceptions

class PermissionDeniedError(AppException):
    """Permission denied."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message=message, code="PERMISSION_DENIED", status_code=403)


# Validation Exceptions

class ValidationError(AppException):
    """Validation error."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=422)


class ReasonRequiredError(AppException):
    """A modification was requested without a justification."""

    def __init__(self, message: str = "A reason is required for every modification"):
        super().__init__(message=message, code="REASON_REQUIRED", status_code=400)


class NoChangesDetectedError(AppException):
    """A modification request did not change any field."""

    def __init__(self, message: str = "No changes detected"):
        super().__init__(message=message, code="NO_CHANGES_DETECTED", status_code=400)


class InsufficientMarginError(AppException):
    """Required margin exceeds the allowed fraction of capital."""

    def __init__(self, message: str = "Insufficient margin"):
        super().__init__(message=message, code="INSUFFICIENT_MARGIN", status_code=400)


class InsufficientFundsError(AppException):
    """Owner balance cannot cover the committed amount."""

    def __init__(self, message: str = "Insufficient funds"):
        super().__init__(message=message, code="INSUFFICIENT_FUNDS", status_code=400)


# Resource Exceptions

class PositionNotFoundError(AppException):
    """Position not found (or not visible in the caller's scope)."""

    def __init__(self, message: str = "Position not found"):
        super().__init__(message=message, code="POSITION_NOT_FOUND", status_code=404)


class PositionConflictError(AppException):
    """Position is already terminal or otherwise not in a writable state."""

    def __init__(self, message: str = "Position is no longer open"):
        super().__init__(message=message, code="POSITION_CONFLICT", status_code=409)


class UserNotFoundError(AppException):
    """User not found."""

    def __init__(self, message: str = "User not found"):
        super().__init__(message=message, code="USER_NOT_FOUND", status_code=404)


# Database Exceptions

class DatabaseError(AppException):
    """Backing store unreachable or the write failed."""

    retryable = True

    def __init__(self, message: str = "Database error"):
        super().__init__(message=message, code="DATABASE_ERROR", status_code=503)

