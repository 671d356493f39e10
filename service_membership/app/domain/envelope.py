"""
Uniform result envelope returned by every datasheet façade method.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shared.errors import ServiceException
from ..adapters.datasheet_client import DatasheetAPIError, DatasheetTransportError


class ErrorCode(str, Enum):
    """Semantic failure kinds surfaced to callers."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    INSUFFICIENT_BALANCE = "insufficient-balance"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not-found"
    RATE_LIMITED = "rate-limited"
    UPSTREAM_SERVER_ERROR = "upstream-server-error"
    NETWORK_ERROR = "network-error"
    UNKNOWN = "unknown"


HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.CONFLICT: 409,
    ErrorCode.INSUFFICIENT_BALANCE: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.UPSTREAM_SERVER_ERROR: 502,
    ErrorCode.NETWORK_ERROR: 502,
    ErrorCode.UNKNOWN: 500,
}

DEFAULT_MESSAGES = {
    ErrorCode.UNAUTHORIZED: "Datasheet API token is invalid or expired",
    ErrorCode.FORBIDDEN: "No permission to access this datasheet",
    ErrorCode.NOT_FOUND: "Datasheet or record does not exist",
    ErrorCode.RATE_LIMITED: "Datasheet API call quota exceeded, retry later",
    ErrorCode.UPSTREAM_SERVER_ERROR: "Datasheet service internal error",
    ErrorCode.NETWORK_ERROR: "Datasheet service unreachable",
}


class ResultEnvelope(BaseModel):
    """Outcome of a façade call.

    ``success`` implies ``data`` is set; a failure always carries
    ``data=None`` and an ``error_code``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    success: bool
    data: Optional[Any] = None
    message: str = ""
    error_code: Optional[ErrorCode] = Field(default=None, alias="errorCode")

    @model_validator(mode="after")
    def _check_consistency(self) -> "ResultEnvelope":
        if self.success and (self.data is None or self.error_code is not None):
            raise ValueError("successful envelope requires data and no error code")
        if not self.success and (self.data is not None or self.error_code is None):
            raise ValueError("failed envelope requires an error code and no data")
        return self

    @classmethod
    def ok(cls, data: Any, message: str = "Request successful") -> "ResultEnvelope":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error_code: ErrorCode, message: Optional[str] = None) -> "ResultEnvelope":
        return cls(
            success=False,
            data=None,
            message=message or DEFAULT_MESSAGES.get(error_code, "Request failed"),
            error_code=error_code,
        )

    @classmethod
    def invalid(cls, message: str) -> "ResultEnvelope":
        return cls.fail(ErrorCode.VALIDATION, message)

    def http_status(self, success_status: int = 200) -> int:
        if self.success:
            return success_status
        return HTTP_STATUS_BY_CODE.get(self.error_code, 500)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def classify_status(status_code: Optional[int]) -> ErrorCode:
    """Map an upstream status code to a semantic error kind."""
    if status_code == 401:
        return ErrorCode.UNAUTHORIZED
    if status_code == 403:
        return ErrorCode.FORBIDDEN
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 429:
        return ErrorCode.RATE_LIMITED
    if status_code is not None and 500 <= status_code < 600:
        return ErrorCode.UPSTREAM_SERVER_ERROR
    return ErrorCode.UNKNOWN


def classify_exception(exc: BaseException) -> ResultEnvelope:
    """Convert any exception raised by a governed call into a failure envelope."""
    if isinstance(exc, DatasheetTransportError):
        return ResultEnvelope.fail(ErrorCode.NETWORK_ERROR, f"{DEFAULT_MESSAGES[ErrorCode.NETWORK_ERROR]}: {exc.upstream_message}")

    if isinstance(exc, DatasheetAPIError):
        error_code = classify_status(exc.status_code)
        message = DEFAULT_MESSAGES.get(error_code) or exc.upstream_message
        return ResultEnvelope.fail(error_code, message)

    if isinstance(exc, ServiceException):
        try:
            error_code = ErrorCode(exc.error_code)
        except ValueError:
            error_code = ErrorCode.UNKNOWN
        return ResultEnvelope.fail(error_code, exc.message)

    return ResultEnvelope.fail(ErrorCode.UNKNOWN, str(exc) or exc.__class__.__name__)
