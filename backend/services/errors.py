from __future__ import annotations

from typing import Any

from allocation.algorithm import UnallocatableStudentError


class CbcsError(Exception):
    """Base for errors surfaced to API callers as `{"code", "message"}`."""

    status_code = 400
    code = "CBCS_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CbcsError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AlreadySubmittedError(CbcsError):
    status_code = 400
    code = "ALREADY_SUBMITTED"


class CycleNotFoundError(CbcsError):
    status_code = 404
    code = "CYCLE_NOT_FOUND"


class CycleAlreadyFinalizedError(CbcsError):
    status_code = 409
    code = "CYCLE_ALREADY_FINALIZED"


class AllocationFailure(CbcsError):
    """A finalize run failed and was rolled back; the cycle is OPEN again."""

    status_code = 500
    code = "ALLOCATION_FAILED"


__all__ = [
    "AllocationFailure",
    "AlreadySubmittedError",
    "CbcsError",
    "CycleAlreadyFinalizedError",
    "CycleNotFoundError",
    "UnallocatableStudentError",
    "ValidationError",
]
