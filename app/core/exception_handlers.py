"""Global exception handling: classification and response mapping.

Every failure that escapes a route (domain errors, token faults, data-layer
faults, framework errors and unexpected exceptions) goes through one handler
that classifies it into an ``ErrorRecord``, logs it exactly once and renders
``{"success": false, "error": ..., "details"?: [...]}``.

Classification order (first match wins):
- Token verification faults → 401 with a fixed message
- AppError → its own status and message (details only for validation)
- Framework request validation → 422 with field issues
- Starlette HTTPException (unknown route, wrong method) → its status
- Known SQLAlchemy faults (unique, foreign key, missing row) → 409/400/404
- SQLAlchemy DataError → 400
- Anything else → 500, redacted in production

No stack trace ever reaches a response body.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.exc import DataError, IntegrityError, NoResultFound, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.errors import AppError, ErrorKind, ErrorRecord
from app.core.logging import get_request_id
from app.core.validation import field_issues

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"

UNIQUE_VIOLATION = "unique_violation"
FOREIGN_KEY_VIOLATION = "foreign_key_violation"
RECORD_NOT_FOUND = "record_not_found"

# Data-layer fault code → (status, client message)
_DATA_FAULTS: dict[str, tuple[int, str]] = {
    UNIQUE_VIOLATION: (409, "Resource already exists"),
    FOREIGN_KEY_VIOLATION: (400, "Invalid reference"),
    RECORD_NOT_FOUND: (404, "Resource not found"),
}

# SQLSTATE codes reported by PostgreSQL drivers
_SQLSTATE_CODES = {
    "23505": UNIQUE_VIOLATION,
    "23503": FOREIGN_KEY_VIOLATION,
}

_KIND_BY_STATUS: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.VALIDATION,
    429: ErrorKind.RATE_LIMITED,
}

ExceptionHandler = Callable[[Request, Exception], Awaitable[JSONResponse]]


def data_fault_code(exc: Exception) -> str | None:
    """Return the known data-layer fault code for ``exc``, if any."""

    if isinstance(exc, NoResultFound):
        return RECORD_NOT_FOUND
    if not isinstance(exc, IntegrityError):
        return None

    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _SQLSTATE_CODES:
        return _SQLSTATE_CODES[sqlstate]

    text = str(orig).lower()
    if "unique" in text or "duplicate" in text:
        return UNIQUE_VIOLATION
    if "foreign key" in text:
        return FOREIGN_KEY_VIOLATION
    return None


def _classify_http_exception(exc: StarletteHTTPException) -> ErrorRecord:
    status_code = exc.status_code
    kind = _KIND_BY_STATUS.get(status_code)
    if kind is None:
        kind = ErrorKind.INTERNAL if status_code >= 500 else ErrorKind.BAD_REQUEST
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return ErrorRecord(
        kind=kind,
        status_code=status_code,
        message=message,
        operational=status_code < 500,
    )


def app_error_record(exc: AppError) -> ErrorRecord:
    """Record for a tagged application error; details only for validation."""

    return ErrorRecord(
        kind=exc.kind,
        status_code=exc.status_code or 500,
        message=exc.message,
        operational=exc.operational,
        details=exc.details if exc.kind is ErrorKind.VALIDATION else None,
        retry_after=exc.retry_after,
    )


def classify_exception(exc: Exception, *, production: bool) -> ErrorRecord:
    """Map any exception to the error record sent to the client.

    Args:
        exc: The failure raised while processing the request.
        production: Redact unexpected failure messages and data-layer metadata.

    Returns:
        ErrorRecord with status, client-safe message and optional details.
    """

    # ExpiredSignatureError subclasses JWTError, so it must be checked first.
    if isinstance(exc, ExpiredSignatureError):
        return ErrorRecord(ErrorKind.UNAUTHORIZED, 401, "Token expired", operational=True)
    if isinstance(exc, JWTError):
        return ErrorRecord(ErrorKind.UNAUTHORIZED, 401, "Invalid token", operational=True)

    if isinstance(exc, AppError):
        return app_error_record(exc)

    if isinstance(exc, RequestValidationError):
        return ErrorRecord(
            kind=ErrorKind.VALIDATION,
            status_code=422,
            message="Validation failed",
            operational=True,
            details=field_issues(exc.errors()),
        )

    if isinstance(exc, StarletteHTTPException):
        return _classify_http_exception(exc)

    code = data_fault_code(exc)
    if code is not None:
        status_code, message = _DATA_FAULTS[code]
        details: list[Any] | None = None
        if not production:
            raw = getattr(exc, "orig", None) or exc
            details = [{"code": code, "message": str(raw)}]
        return ErrorRecord(
            kind=ErrorKind.UPSTREAM_DATA,
            status_code=status_code,
            message=message,
            operational=True,
            details=details,
        )

    if isinstance(exc, DataError):
        return ErrorRecord(
            ErrorKind.UPSTREAM_DATA, 400, "Invalid data provided", operational=True
        )

    message = INTERNAL_ERROR_MESSAGE if production else (str(exc) or type(exc).__name__)
    return ErrorRecord(ErrorKind.INTERNAL, 500, message, operational=False)


def build_error_response(record: ErrorRecord) -> JSONResponse:
    """Render an error record as the stable JSON error response."""

    headers: dict[str, str] | None = None
    if record.retry_after is not None:
        headers = {"Retry-After": str(record.retry_after)}
    return JSONResponse(
        status_code=record.status_code,
        content=record.to_body(),
        headers=headers,
    )


def _log_failure(
    request: Request, exc: Exception, record: ErrorRecord, *, production: bool
) -> None:
    extra: dict[str, Any] = {
        "error_name": type(exc).__name__,
        "error_kind": record.kind.value,
        "error_message": str(exc),
        "status_code": record.status_code,
        "request_path": request.url.path,
        "request_method": request.method,
        "request_id": get_request_id(),
    }
    if not production:
        extra["trace"] = "".join(traceback.format_exception(exc))

    level = logging.WARNING if record.operational else logging.ERROR
    logger.log(level, "request_failed", extra=extra)


def make_exception_handler(*, production: bool) -> ExceptionHandler:
    """Build the terminal exception handler.

    Args:
        production: Whether production redaction applies.

    Returns:
        Coroutine handler suitable for ``app.exception_handler``.
    """

    async def handle_exception(request: Request, exc: Exception) -> JSONResponse:
        record = classify_exception(exc, production=production)
        _log_failure(request, exc, record, production=production)
        return build_error_response(record)

    return handle_exception


class UnhandledExceptionMiddleware:
    """Pure ASGI catch-all that answers unexpected failures inside the stack.

    Place it directly under the request id middleware: the error response then
    still gets correlation headers and the log record still carries the
    request id. Failures after the response started cannot be answered and
    are re-raised for the server to abort the connection.
    """

    def __init__(self, app: ASGIApp, *, production: bool) -> None:
        self.app = app
        self.handler = make_exception_handler(production=production)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            if response_started:
                raise
            response = await self.handler(Request(scope, receive), exc)
            await response(scope, receive, send)


def setup_exception_handlers(app: FastAPI, *, production: bool) -> None:
    """Register the exception handler for every failure type.

    Tagged errors, framework errors, token faults and SQLAlchemy faults are
    handled inside the routing layer, so every middleware still sees a
    normal response. ``Exception`` is registered as well for Starlette's
    outermost error middleware; it is only reached when
    ``UnhandledExceptionMiddleware`` is not installed.

    Example:
        >>> from fastapi import FastAPI
        >>> app = FastAPI()
        >>> setup_exception_handlers(app, production=False)
        >>> app.add_middleware(UnhandledExceptionMiddleware, production=False)
    """

    handler = make_exception_handler(production=production)
    for exc_class in (
        AppError,
        StarletteHTTPException,
        RequestValidationError,
        JWTError,
        SQLAlchemyError,
        Exception,
    ):
        app.add_exception_handler(exc_class, handler)
