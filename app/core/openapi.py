"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- Bearer token security scheme applied to the ``/users`` and ``/upload`` operations
- A shared error response schema documenting the error body

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_SECURED_PREFIXES = ("/users", "/upload/")

_ERROR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["success", "error"],
    "properties": {
        "success": {"type": "boolean", "enum": [False]},
        "error": {"type": "string"},
        "details": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "field": {"type": "string"},
                    "message": {"type": "string"},
                },
            },
        },
        "retryAfter": {"type": "integer"},
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for bearer auth
    - Marks ``/users`` and ``/upload`` operations as requiring a bearer token
    - Documents the error body and the 429 response on every operation
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "BearerAuth",
            {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Provide the access token returned by /auth/login.",
            },
        )
        components.setdefault("schemas", {}).setdefault("ErrorResponse", _ERROR_SCHEMA)

        # Tags metadata
        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Auth", "description": "Registration and login (strict rate limit)."},
            {"name": "Users", "description": "Profile management for authenticated users."},
            {"name": "Upload", "description": "Image uploads for authenticated users."},
            {"name": "Health", "description": "Liveness checks (not rate limited)."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        error_ref = {"$ref": "#/components/schemas/ErrorResponse"}
        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.startswith(_SECURED_PREFIXES):
                    method_obj["security"] = [{"BearerAuth": []}]
                if path.endswith("/health"):
                    continue
                responses = method_obj.setdefault("responses", {})
                responses.setdefault(
                    "429",
                    {
                        "description": "Too many requests",
                        "content": {"application/json": {"schema": error_ref}},
                    },
                )

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
