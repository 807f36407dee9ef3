"""Tests for global exception handlers.

Validates that every failure type is classified consistently (status code,
client message, optional details), rendered in the single error format,
logged once, and never leaks internals in production.
"""

import asyncio
import logging
import sqlite3

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.exc import DataError, IntegrityError, NoResultFound

from app.core.errors import AppError, ErrorKind
from app.core.exception_handlers import (
    FOREIGN_KEY_VIOLATION,
    UNIQUE_VIOLATION,
    UnhandledExceptionMiddleware,
    classify_exception,
    data_fault_code,
    setup_exception_handlers,
)

HANDLER_LOGGER = "app.core.exception_handlers"


class _PgUniqueViolation(Exception):
    pgcode = "23505"


class _PgForeignKeyViolation(Exception):
    pgcode = "23503"


def _integrity(orig: Exception) -> IntegrityError:
    return IntegrityError("INSERT INTO users ...", {}, orig)


def _app(production: bool = False, *, catch_all: bool = True) -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app, production=production)
    if catch_all:
        app.add_middleware(UnhandledExceptionMiddleware, production=production)

    @app.get("/app-error")
    async def app_error():
        raise AppError(ErrorKind.CONFLICT, "Email already registered")

    @app.get("/validation")
    async def validation():
        raise AppError(
            ErrorKind.VALIDATION,
            "Validation failed",
            details=[{"field": "email", "message": "Invalid email format"}],
        )

    @app.get("/not-found")
    async def not_found():
        raise AppError(ErrorKind.NOT_FOUND, "User not found", details=[{"field": "x", "message": "y"}])

    @app.get("/expired")
    async def expired():
        raise ExpiredSignatureError("Signature has expired.")

    @app.get("/duplicate")
    async def duplicate():
        raise _integrity(sqlite3.IntegrityError("UNIQUE constraint failed: users.email"))

    @app.get("/crash")
    async def crash():
        raise RuntimeError("connection to 10.0.0.5 refused")

    @app.get("/items/{item_id}")
    async def item(item_id: int):
        return {"id": item_id}

    @app.get("/forbidden")
    async def forbidden():
        raise HTTPException(status_code=403, detail="Nope")

    return app


@pytest.fixture
def client() -> TestClient:
    return TestClient(_app())


@pytest.fixture
def production_client() -> TestClient:
    return TestClient(_app(production=True))


class TestClassification:
    """Direct checks of the exception → record mapping."""

    @pytest.mark.parametrize(
        ("kind", "status_code"),
        [
            (ErrorKind.VALIDATION, 422),
            (ErrorKind.BAD_REQUEST, 400),
            (ErrorKind.UNAUTHORIZED, 401),
            (ErrorKind.FORBIDDEN, 403),
            (ErrorKind.NOT_FOUND, 404),
            (ErrorKind.CONFLICT, 409),
            (ErrorKind.RATE_LIMITED, 429),
            (ErrorKind.INTERNAL, 500),
        ],
    )
    def test_app_error_status_follows_kind(self, kind: ErrorKind, status_code: int) -> None:
        record = classify_exception(AppError(kind, "message"), production=False)

        assert record.status_code == status_code
        assert record.message == "message"
        assert record.operational is (kind is not ErrorKind.INTERNAL)

    def test_app_error_status_override(self) -> None:
        record = classify_exception(
            AppError(ErrorKind.BAD_REQUEST, "Gone", status_code=410), production=False
        )
        assert record.status_code == 410

    def test_expired_token_checked_before_generic_token_error(self) -> None:
        expired = classify_exception(ExpiredSignatureError("expired"), production=False)
        invalid = classify_exception(JWTError("Signature verification failed"), production=False)

        assert (expired.status_code, expired.message) == (401, "Token expired")
        assert (invalid.status_code, invalid.message) == (401, "Invalid token")

    def test_request_validation_error_lists_fields(self) -> None:
        exc = RequestValidationError(
            [{"loc": ("body", "email"), "msg": "Field required", "type": "missing"}]
        )

        record = classify_exception(exc, production=True)

        assert record.status_code == 422
        assert record.message == "Validation failed"
        assert record.details == [{"field": "email", "message": "Field required"}]

    @pytest.mark.parametrize(
        ("orig", "code", "status_code", "message"),
        [
            (
                sqlite3.IntegrityError("UNIQUE constraint failed: users.email"),
                UNIQUE_VIOLATION,
                409,
                "Resource already exists",
            ),
            (
                sqlite3.IntegrityError("FOREIGN KEY constraint failed"),
                FOREIGN_KEY_VIOLATION,
                400,
                "Invalid reference",
            ),
            (_PgUniqueViolation("duplicate key value"), UNIQUE_VIOLATION, 409, "Resource already exists"),
            (_PgForeignKeyViolation("violates constraint"), FOREIGN_KEY_VIOLATION, 400, "Invalid reference"),
        ],
    )
    def test_integrity_faults(self, orig: Exception, code: str, status_code: int, message: str) -> None:
        exc = _integrity(orig)

        assert data_fault_code(exc) == code
        record = classify_exception(exc, production=False)
        assert record.kind is ErrorKind.UPSTREAM_DATA
        assert (record.status_code, record.message) == (status_code, message)
        assert record.details == [{"code": code, "message": str(orig)}]

    def test_data_fault_metadata_hidden_in_production(self) -> None:
        exc = _integrity(sqlite3.IntegrityError("UNIQUE constraint failed: users.email"))

        record = classify_exception(exc, production=True)

        assert record.status_code == 409
        assert record.details is None

    def test_unrecognised_integrity_error_is_internal(self) -> None:
        exc = _integrity(sqlite3.IntegrityError("NOT NULL constraint failed: users.name"))

        assert data_fault_code(exc) is None
        assert classify_exception(exc, production=True).status_code == 500

    def test_missing_record_maps_to_404(self) -> None:
        record = classify_exception(NoResultFound("No row was found"), production=False)
        assert (record.status_code, record.message) == (404, "Resource not found")

    def test_data_error_maps_to_400(self) -> None:
        exc = DataError("SELECT ...", {}, Exception("value too long"))

        record = classify_exception(exc, production=False)

        assert (record.status_code, record.message) == (400, "Invalid data provided")

    def test_unknown_error_message_redacted_only_in_production(self) -> None:
        exc = RuntimeError("pool exhausted")

        assert classify_exception(exc, production=False).message == "pool exhausted"
        redacted = classify_exception(exc, production=True)
        assert redacted.message == "Internal server error"
        assert redacted.operational is False

    def test_framework_http_errors_keep_status(self) -> None:
        record = classify_exception(HTTPException(status_code=405, detail="Method Not Allowed"), production=False)
        assert (record.status_code, record.message, record.kind) == (
            405,
            "Method Not Allowed",
            ErrorKind.BAD_REQUEST,
        )


class TestResponses:
    def test_app_error_body(self, client: TestClient) -> None:
        response = client.get("/app-error")

        assert response.status_code == 409
        assert response.json() == {"success": False, "error": "Email already registered"}

    def test_validation_details_pass_through(self, client: TestClient) -> None:
        response = client.get("/validation")

        assert response.status_code == 422
        assert response.json() == {
            "success": False,
            "error": "Validation failed",
            "details": [{"field": "email", "message": "Invalid email format"}],
        }

    def test_details_only_rendered_for_validation(self, client: TestClient) -> None:
        response = client.get("/not-found")

        assert response.status_code == 404
        assert "details" not in response.json()

    def test_expired_token(self, client: TestClient) -> None:
        response = client.get("/expired")

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Token expired"}

    def test_duplicate_row(self, client: TestClient) -> None:
        response = client.get("/duplicate")

        assert response.status_code == 409
        assert response.json()["error"] == "Resource already exists"

    def test_path_parameter_validation(self, client: TestClient) -> None:
        response = client.get("/items/abc")

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Validation failed"
        assert body["details"][0]["field"] == "path.item_id"

    def test_unknown_route(self, client: TestClient) -> None:
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}

    def test_http_exception_detail(self, client: TestClient) -> None:
        response = client.get("/forbidden")

        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "Nope"}

    def test_unexpected_error_in_development(self, client: TestClient) -> None:
        response = client.get("/crash")

        assert response.status_code == 500
        body = response.json()
        assert body == {"success": False, "error": "connection to 10.0.0.5 refused"}
        assert "Traceback" not in response.text

    def test_unexpected_error_in_production(self, production_client: TestClient) -> None:
        response = production_client.get("/crash")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}
        assert "10.0.0.5" not in response.text

    def test_production_hides_data_layer_details(self, production_client: TestClient) -> None:
        response = production_client.get("/duplicate")

        assert response.status_code == 409
        assert response.json() == {"success": False, "error": "Resource already exists"}


class TestHandledInsideStack:
    """Failures become responses below the outermost server middleware."""

    def test_token_and_data_faults_do_not_escape(self) -> None:
        client = TestClient(_app(catch_all=False))

        assert client.get("/expired").status_code == 401
        assert client.get("/duplicate").status_code == 409

    def test_outer_middleware_sees_unexpected_failure_response(self) -> None:
        app = _app()

        @app.middleware("http")
        async def tag_response(request, call_next):
            response = await call_next(request)
            response.headers["X-Outer"] = "seen"
            return response

        response = TestClient(app).get("/crash")

        assert response.status_code == 500
        assert response.headers["X-Outer"] == "seen"

    def test_failure_after_response_start_is_reraised(self) -> None:
        async def half_sent(scope, receive, send) -> None:
            await send({"type": "http.response.start", "status": 200, "headers": []})
            raise RuntimeError("stream broke")

        middleware = UnhandledExceptionMiddleware(half_sent, production=False)
        sent: list[dict] = []

        async def send(message: dict) -> None:
            sent.append(message)

        async def receive() -> dict:
            return {"type": "http.request", "body": b"", "more_body": False}

        scope = {
            "type": "http",
            "method": "GET",
            "path": "/",
            "query_string": b"",
            "headers": [],
            "app": _app(),
        }
        with pytest.raises(RuntimeError):
            asyncio.run(middleware(scope, receive, send))

        assert [message["type"] for message in sent] == ["http.response.start"]


class TestLogging:
    def _failures(self, caplog: pytest.LogCaptureFixture) -> list[logging.LogRecord]:
        return [
            r for r in caplog.records if r.name == HANDLER_LOGGER and r.getMessage() == "request_failed"
        ]

    def test_each_failure_logged_once(self, client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger=HANDLER_LOGGER):
            client.get("/app-error")

        failures = self._failures(caplog)
        assert len(failures) == 1
        record = failures[0]
        assert record.levelno == logging.WARNING
        assert record.error_kind == "conflict"
        assert record.request_path == "/app-error"
        assert record.request_method == "GET"

    def test_unexpected_failure_logged_at_error_with_trace(
        self, client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger=HANDLER_LOGGER):
            client.get("/crash")

        failures = self._failures(caplog)
        assert len(failures) == 1
        assert failures[0].levelno == logging.ERROR
        assert failures[0].error_name == "RuntimeError"
        assert "RuntimeError" in failures[0].trace

    def test_production_log_omits_trace(
        self, production_client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger=HANDLER_LOGGER):
            production_client.get("/crash")

        failures = self._failures(caplog)
        assert len(failures) == 1
        assert not hasattr(failures[0], "trace")
        # The log keeps the real message even though the client does not see it.
        assert failures[0].error_message == "connection to 10.0.0.5 refused"
