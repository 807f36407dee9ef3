"""Request body validation returning results instead of raising.

Invalid input is a common, expected case, so ``validate_payload`` returns a
``ValidationResult`` holding either the parsed model or a VALIDATION
``AppError``. The FastAPI dependency built by ``validated_body`` inspects the
result and raises the typed fault itself; nothing relies on a catch-all.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Mapping, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from app.core.errors import AppError, ErrorKind, FieldIssue

ModelT = TypeVar("ModelT", bound=BaseModel)

VALIDATION_FAILED_MESSAGE = "Validation failed"


@dataclass(frozen=True)
class ValidationResult(Generic[ModelT]):
    """Outcome of validating a payload against a schema."""

    value: ModelT | None = None
    error: AppError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _issue_message(error: Mapping[str, Any]) -> str:
    # Custom validators raise ValueError; pydantic prefixes those with "Value error, ".
    ctx = error.get("ctx") or {}
    if error.get("type") == "value_error" and "error" in ctx:
        return str(ctx["error"])
    return str(error.get("msg", "Invalid value"))


def field_issues(errors: Iterable[Mapping[str, Any]]) -> list[FieldIssue]:
    """Convert pydantic/FastAPI error dicts into client field issues.

    Examples:
        >>> field_issues([{"loc": ("body", "email"), "msg": "Field required", "type": "missing"}])
        [{'field': 'email', 'message': 'Field required'}]
    """

    issues: list[FieldIssue] = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        issues.append({"field": ".".join(loc) or "body", "message": _issue_message(error)})
    return issues


def validation_error(issues: list[FieldIssue]) -> AppError:
    return AppError(ErrorKind.VALIDATION, VALIDATION_FAILED_MESSAGE, details=issues)


def validate_payload(model: type[ModelT], payload: Any) -> ValidationResult[ModelT]:
    """Validate ``payload`` against ``model`` without raising on bad input.

    Args:
        model: Pydantic model class describing the expected body.
        payload: Decoded JSON value.

    Returns:
        ValidationResult with the parsed model, or a VALIDATION AppError whose
        details list every failing field.
    """

    try:
        value = model.model_validate(payload)
    except ValidationError as exc:
        return ValidationResult(error=validation_error(field_issues(exc.errors())))
    return ValidationResult(value=value)


def validated_body(model: type[ModelT]) -> Callable[[Request], Awaitable[ModelT]]:
    """Build a FastAPI dependency that parses and validates the JSON body.

    Usage:
        @router.post("/register")
        async def register(payload: RegisterRequest = Depends(validated_body(RegisterRequest))):
            ...
    """

    async def dependency(request: Request) -> ModelT:
        try:
            payload = await request.json()
        except ValueError:
            raise validation_error([{"field": "body", "message": "Malformed JSON body"}]) from None

        result = validate_payload(model, payload)
        if not result.ok:
            raise result.error  # type: ignore[misc]
        return result.value  # type: ignore[return-value]

    return dependency


def json_body_openapi(model: type[BaseModel]) -> dict[str, Any]:
    """``openapi_extra`` documenting a body read through ``validated_body``.

    Usage:
        @router.post("/login", openapi_extra=json_body_openapi(LoginRequest))
    """

    return {
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": model.model_json_schema(by_alias=True)}},
        }
    }
