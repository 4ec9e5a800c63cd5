from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    LIMIT_EXCEEDED = "limit_exceeded"
    DUAL_AUTHORIZATION_REQUIRED = "dual_authorization_required"
    SEPARATION_OF_DUTIES_VIOLATION = "separation_of_duties_violation"
    ILLEGAL_TRANSITION = "illegal_transition"
    STALE_VERSION = "stale_version"
    BUSINESS_HOURS_RESTRICTED = "business_hours_restricted"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"


@dataclass(eq=False)
class EngineError(ValueError):
    kind: ErrorKind
    code: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a gated operation: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        code: str | None = None,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        value: Any = None,
    ) -> "Result[T]":
        return cls(
            value=value,
            error=EngineError(
                kind=kind,
                code=code or kind.value,
                message=message or kind.value.replace("_", " ").capitalize(),
                details=details or {},
            ),
        )

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
