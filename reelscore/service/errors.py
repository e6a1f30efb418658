from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

INTERNAL_ERROR_MESSAGE = "Internal server error"


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code rendered into the response envelope:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class ErrorKind(str, Enum):
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL = "INTERNAL"


_KIND_TO_ERROR: Dict[ErrorKind, type[ServiceError]] = {
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.UNAUTHORIZED: AuthenticationError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.INTERNAL: ServerError,
}


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_exception(self) -> ServiceError:
        return _KIND_TO_ERROR[self.kind](self.message, detail=dict(self.detail))


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a typed failure; domain errors are returned, not raised."""

    value: Optional[T] = None
    error: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        detail: Optional[Dict[str, Any]] = None,
    ) -> "Outcome[T]":
        return cls(error=Failure(kind, message, detail or {}))

    @classmethod
    def internal(cls) -> "Outcome[T]":
        return cls.failure(ErrorKind.INTERNAL, INTERNAL_ERROR_MESSAGE)

    def unwrap(self) -> T:
        """Return the value or raise the ServiceError matching the failure kind."""
        if self.error is not None:
            raise self.error.to_exception()
        return self.value  # type: ignore[return-value]


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "ErrorKind",
    "Failure",
    "Outcome",
    "INTERNAL_ERROR_MESSAGE",
]
