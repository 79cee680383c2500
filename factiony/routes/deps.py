"""Shared route dependencies and the result-to-HTTP error mapping."""

from typing import Any

from fastapi import Request

from factiony.services.coordinator import (
    REASON_DOCUMENT_DISABLED,
    REASON_LIST_MISSING,
    REASON_NOT_FOLLOWING,
    REASON_RELATIONAL_DISABLED,
    REASON_USER_NOT_FOUND,
    Coordinator,
    OperationResult,
)
from factiony.stores.errors import ErrorKind

# reason -> (HTTP status, error code)
REASON_STATUS: dict[str, tuple[int, str]] = {
    REASON_USER_NOT_FOUND: (404, "USER_NOT_FOUND"),
    REASON_NOT_FOLLOWING: (404, "NOT_FOLLOWING"),
    REASON_LIST_MISSING: (404, "LIST_NOT_FOUND"),
    REASON_RELATIONAL_DISABLED: (503, "STORE_UNAVAILABLE"),
    REASON_DOCUMENT_DISABLED: (503, "STORE_UNAVAILABLE"),
    ErrorKind.CONNECTIVITY.value: (503, "STORE_UNAVAILABLE"),
    ErrorKind.AUTHORIZATION.value: (503, "STORE_UNAVAILABLE"),
    ErrorKind.UNKNOWN.value: (500, "STORE_ERROR"),
    # conflict reasons
    "duplicate": (409, "CONFLICT"),
    "self_follow": (409, "CONFLICT"),
    "private_account": (409, "CONFLICT"),
    "missing_user": (409, "CONFLICT"),
    "constraint": (409, "CONFLICT"),
}


class ApiError(Exception):
    """Raised by routes; rendered as the standard error envelope."""

    def __init__(self, status_code: int, code: str, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.detail = detail


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


def unwrap(result: OperationResult) -> Any:
    """Return the result value, or raise the ApiError matching its reason."""
    if result.ok:
        return result.value
    status_code, code = REASON_STATUS.get(result.reason or "", (500, "STORE_ERROR"))
    raise ApiError(status_code, code, result.status, {"reason": result.reason})
