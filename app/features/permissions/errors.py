"""
Result objects returned by module, role and assignment operations.

Mutations never raise across their boundary; they return an ActionResult that
the HTTP layer turns into a status code with `raise_for_result`.
"""
import enum
from typing import Any
from fastapi import HTTPException, status
from pydantic import BaseModel


class ErrorCode(str, enum.Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVARIANT_VIOLATION = "invariant_violation"
    UNAUTHORIZED = "unauthorized"
    TRANSIENT_STORE_ERROR = "transient_store_error"


ERROR_STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVARIANT_VIOLATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorCode.TRANSIENT_STORE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class ActionResult(BaseModel):
    """Outcome of a mutation: `data` on success, `code` and `error` on failure."""
    success: bool
    data: Any = None
    error: str | None = None
    code: ErrorCode | None = None
    
    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)
    
    @classmethod
    def fail(cls, code: ErrorCode, error: str) -> "ActionResult":
        return cls(success=False, code=code, error=error)


def raise_for_result(result: ActionResult) -> Any:
    """Return `result.data`, or raise the HTTPException matching the failure."""
    if result.success:
        return result.data
    
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(result.code, status.HTTP_400_BAD_REQUEST),
        detail=result.error or "Request failed"
    )
