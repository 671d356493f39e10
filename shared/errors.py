"""
Shared error handling for the membership POS backend.

Every exception type carries the HTTP status and the public error code it is
reported with, so route handlers and the base service never keep their own
mapping tables.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Failure body, shaped like a failed result envelope."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    data: None = None
    message: str
    error_code: str = Field(alias="errorCode")
    request_id: Optional[str] = Field(default=None, alias="requestId")
    details: Dict[str, Any] = Field(default_factory=dict)


class ServiceException(Exception):
    """Base exception for POS backend services."""

    status_code = 500
    error_code = "unknown"

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            message=self.message,
            error_code=self.error_code,
            request_id=request_id,
            details=self.details,
        )


class AuthenticationError(ServiceException):
    """Datasheet token rejected."""

    status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(ServiceException):
    status_code = 403
    error_code = "forbidden"

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(ServiceException):
    """Request rejected before any datasheet call."""

    status_code = 400
    error_code = "validation"

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(ServiceException):
    """Requested record does not exist."""

    status_code = 404
    error_code = "not-found"

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ExternalServiceError(ServiceException):
    """A dependency outside this process failed."""

    status_code = 502
    error_code = "upstream-server-error"

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
        self.service = service


class RateLimitError(ServiceException):
    status_code = 429
    error_code = "rate-limited"

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)
