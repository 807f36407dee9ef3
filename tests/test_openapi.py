"""Tests for the generated OpenAPI document."""

import pytest
from fastapi.testclient import TestClient


@pytest.mark.parametrize(
    ("path", "method", "field"),
    [
        ("/auth/register", "post", "password"),
        ("/auth/login", "post", "email"),
        ("/users/me", "patch", "name"),
        ("/users/me/password", "put", "newPassword"),
    ],
)
def test_json_bodies_are_documented(client: TestClient, path: str, method: str, field: str) -> None:
    schema = client.get("/openapi.json").json()

    body = schema["paths"][path][method]["requestBody"]
    assert body["required"] is True
    assert field in body["content"]["application/json"]["schema"]["properties"]


def test_protected_operations_declare_bearer_auth(client: TestClient) -> None:
    schema = client.get("/openapi.json").json()

    assert "BearerAuth" in schema["components"]["securitySchemes"]
    assert schema["paths"]["/users/me"]["get"]["security"] == [{"BearerAuth": []}]
    assert schema["paths"]["/upload/single"]["post"]["security"] == [{"BearerAuth": []}]
    assert "security" not in schema["paths"]["/auth/login"]["post"]
    assert "429" in schema["paths"]["/auth/login"]["post"]["responses"]
