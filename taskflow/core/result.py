"""
Operation Results
=================

Structured return value for public application operations.

Expected business conditions (missing entity, pause state violations, no
eligible assignee) are reported as failed results with a typed error code
instead of escaping as exceptions.
"""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from taskflow.core.exceptions import ApplicationException

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Success payload or typed failure reason."""

    success: bool
    data: Optional[T] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    details: Optional[dict] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error_code: str,
        error: str,
        details: Optional[dict] = None
    ) -> "OperationResult":
        return cls(success=False, error_code=error_code, error=error, details=details or {})

    @classmethod
    def from_exception(cls, exc: ApplicationException) -> "OperationResult":
        return cls.fail(exc.code, exc.message, exc.details)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        payload = self.data
        if hasattr(payload, "to_dict"):
            payload = payload.to_dict()
        elif isinstance(payload, list):
            payload = [p.to_dict() if hasattr(p, "to_dict") else p for p in payload]
        return {
            "success": self.success,
            "data": payload,
            "error_code": self.error_code,
            "error": self.error,
            "details": self.details,
        }
