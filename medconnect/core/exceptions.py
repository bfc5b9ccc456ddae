from typing import Dict, Any, Optional
from datetime import datetime
from pydantic import BaseModel


class BaseCustomException(Exception):
    """Base class for workflow exceptions.

    Exceptions only carry a semantic ``error_code``; the HTTP layer decides
    how each kind is presented to clients.
    """

    default_message = "Unexpected error"
    default_error_code = "UNEXPECTED_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.error_code = error_code or self.default_error_code
        super().__init__(self.message)


class NotFoundError(BaseCustomException):
    """Prescription, token, patient or doctor is missing"""
    default_message = "Resource not found"
    default_error_code = "NOT_FOUND"


class ExpiredError(BaseCustomException):
    """Token or prescription aged out"""
    default_message = "QR code has expired"
    default_error_code = "EXPIRED"


class AlreadyConsumedError(BaseCustomException):
    """Single-use token has already been redeemed"""
    default_message = "QR code has already been used"
    default_error_code = "ALREADY_CONSUMED"


class InvalidStateTransitionError(BaseCustomException):
    """Requested transition is not an edge of the prescription state machine"""
    default_message = "Prescription cannot move to the requested status"
    default_error_code = "INVALID_STATE_TRANSITION"


class ValidationError(BaseCustomException):
    """Malformed input, e.g. dispensing lines"""
    default_message = "Validation failed"
    default_error_code = "VALIDATION_FAILED"


class CorruptTokenError(BaseCustomException):
    """Token payload could not be decrypted or decoded"""
    default_message = "Invalid QR code data"
    default_error_code = "CORRUPT"


class ConcurrencyConflictError(BaseCustomException):
    """Another request changed the same prescription first"""
    default_message = "Prescription was modified concurrently"
    default_error_code = "CONCURRENCY_CONFLICT"


class ConfigurationError(BaseCustomException):
    """Exception for configuration errors"""
    default_message = "Configuration error"
    default_error_code = "CONFIGURATION_ERROR"


# Response models for errors
class ErrorResponse(BaseModel):
    """Standard error response model"""
    error: str
    message: str
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None
    request_id: Optional[str] = None


def create_error_response(
    exception: BaseCustomException,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create standardized error response"""
    response = {
        "error": exception.__class__.__name__.replace("Error", " Error").strip(),
        "message": exception.message,
        "error_code": exception.error_code,
        "timestamp": datetime.utcnow().isoformat(),
        "request_id": request_id
    }

    if exception.details:
        response["details"] = exception.details

    return response
