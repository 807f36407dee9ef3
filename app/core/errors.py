"""Application-level error types.

Every expected failure is an ``AppError`` tagged with an ``ErrorKind``. The
kind fixes the default HTTP status and client message, so services never
format responses themselves and the exception handlers can map each kind
to exactly one response shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypedDict


class ErrorKind(str, Enum):
    """Failure taxonomy shared by services, the rate limiter and handlers."""

    VALIDATION = "validation"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_DATA = "upstream_data_error"
    INTERNAL = "internal"


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_DATA: 400,
    ErrorKind.INTERNAL: 500,
}

DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Validation error",
    ErrorKind.BAD_REQUEST: "Bad request",
    ErrorKind.UNAUTHORIZED: "Unauthorized",
    ErrorKind.FORBIDDEN: "Forbidden",
    ErrorKind.NOT_FOUND: "Resource not found",
    ErrorKind.CONFLICT: "Resource already exists",
    ErrorKind.RATE_LIMITED: "Too many requests, please try again later",
    ErrorKind.UPSTREAM_DATA: "Invalid data provided",
    ErrorKind.INTERNAL: "Internal server error",
}


class FieldIssue(TypedDict):
    """A single field-level validation problem returned to clients."""

    field: str
    message: str


@dataclass
class AppError(Exception):
    """Tagged application failure.

    Attributes:
        kind: Failure category; decides status code and default message.
        message: Human-readable, client-safe message.
        details: Field issues. Only rendered for VALIDATION errors.
        status_code: HTTP status override (defaults from ``kind``).
        retry_after: Seconds a throttled client should wait (RATE_LIMITED).
    """

    kind: ErrorKind
    message: str = ""
    details: list[FieldIssue] | None = None
    status_code: int | None = None
    retry_after: int | None = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = DEFAULT_MESSAGES[self.kind]
        if self.status_code is None:
            self.status_code = STATUS_BY_KIND[self.kind]
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    @property
    def operational(self) -> bool:
        """Whether the failure is expected and attributable to the client."""
        return self.kind is not ErrorKind.INTERNAL


@dataclass(frozen=True)
class ErrorRecord:
    """Classified failure, consumed once to build the client response."""

    kind: ErrorKind
    status_code: int
    message: str
    operational: bool
    details: list[Any] | None = None
    retry_after: int | None = None

    def to_body(self) -> dict[str, Any]:
        """Render the stable client-facing JSON body."""
        body: dict[str, Any] = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        return body
