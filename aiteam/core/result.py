"""Tagged success/error results returned by every public coordinator operation."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""

    # not found
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
    # conflict
    SERVICE_ALREADY_EXISTS = "SERVICE_ALREADY_EXISTS"
    TASK_ALREADY_ASSIGNED = "TASK_ALREADY_ASSIGNED"
    # resource exhaustion
    NO_AVAILABLE_PORTS = "NO_AVAILABLE_PORTS"
    NO_AVAILABLE_AGENT = "NO_AVAILABLE_AGENT"
    # infrastructure failure
    SERVICE_START_ERROR = "SERVICE_START_ERROR"
    SERVICE_STOP_ERROR = "SERVICE_STOP_ERROR"
    HEALTH_CHECK_ERROR = "HEALTH_CHECK_ERROR"
    TASK_EXECUTION_ERROR = "TASK_EXECUTION_ERROR"
    LLM_ERROR = "LLM_ERROR"
    # coordination logic
    AGENT_REGISTRATION_ERROR = "AGENT_REGISTRATION_ERROR"
    UPDATE_STATUS_ERROR = "UPDATE_STATUS_ERROR"
    TASK_ASSIGNMENT_ERROR = "TASK_ASSIGNMENT_ERROR"
    TASK_COMPLETION_ERROR = "TASK_COMPLETION_ERROR"
    ESCALATION_ERROR = "ESCALATION_ERROR"


NOT_FOUND_CODES = frozenset(
    {ErrorCode.SERVICE_NOT_FOUND, ErrorCode.TASK_NOT_FOUND, ErrorCode.AGENT_NOT_FOUND}
)
CONFLICT_CODES = frozenset({ErrorCode.SERVICE_ALREADY_EXISTS, ErrorCode.TASK_ALREADY_ASSIGNED})
EXHAUSTION_CODES = frozenset({ErrorCode.NO_AVAILABLE_PORTS, ErrorCode.NO_AVAILABLE_AGENT})


@dataclass(slots=True, frozen=True)
class ServiceError:
    """Structured error with a stable code and a human-readable message."""

    code: ErrorCode
    message: str
    details: Optional[str] = None

    def as_dict(self) -> dict:
        payload = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(slots=True, frozen=True)
class Result(Generic[T]):
    """Discriminated result: either ``data`` (success) or ``error``."""

    success: bool
    data: Optional[T] = None
    error: Optional[ServiceError] = None

    @classmethod
    def ok(cls, data: Any = None) -> Result[Any]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, details: Optional[str] = None) -> Result[Any]:
        return cls(success=False, error=ServiceError(code=code, message=message, details=details))

    def unwrap(self) -> T:
        """Return the payload or raise when the result is an error."""
        if not self.success:
            assert self.error is not None
            raise RuntimeError(f"{self.error.code.value}: {self.error.message}")
        return self.data  # type: ignore[return-value]
