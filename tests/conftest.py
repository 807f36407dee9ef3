"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any app import so the global settings
object builds without a .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-key-with-enough-length")
os.environ.setdefault("AUTH_BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_QUEUE_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.config import RateLimitSettings, Settings, UploadSettings

STRONG_PASSWORD = "Str0ng!Pass"


@pytest.fixture
def make_app(tmp_path: Path) -> Callable[..., FastAPI]:
    """Build an app with overridable rate limit settings and environment.

    Uploads go to a per-test temporary directory.
    """

    def _make(app_env: str = "testing", **rate_limit: Any) -> FastAPI:
        cfg = Settings(
            app_env=app_env,
            rate_limit=RateLimitSettings(**rate_limit),
            upload=UploadSettings(dir=str(tmp_path / "uploads")),
        )
        return create_app(cfg)

    return _make


@pytest.fixture
def client(make_app: Callable[..., FastAPI]) -> TestClient:
    """Client for an app with the default rate limits."""
    return TestClient(make_app())


@pytest.fixture
def register_user() -> Callable[..., dict[str, Any]]:
    """Register a user through the API and return ``{"user": ..., "token": ...}``."""

    def _register(
        client: TestClient,
        email: str = "jane@example.com",
        name: str = "Jane Doe",
        password: str = STRONG_PASSWORD,
    ) -> dict[str, Any]:
        response = client.post(
            "/auth/register", json={"email": email, "name": name, "password": password}
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _register
