"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Values are read once at startup; request handling never re-validates them.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_auth_settings() -> "AuthSettings":
    """Build auth settings from environment (see _build_app_settings)."""

    return AuthSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_database_settings() -> "DatabaseSettings":
    return DatabaseSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


def _build_upload_settings() -> "UploadSettings":
    return UploadSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        "User Auth API",
        description="Service name used in OpenAPI metadata and startup logs",
    )
    host: str = Field(
        "0.0.0.0",
        description="Bind address used by the uvicorn entry point",
    )
    port: int = Field(
        3000,
        description="Bind port used by the uvicorn entry point",
        ge=1,
        le=65535,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class AuthSettings(BaseSettings):
    """Token signing and password hashing configuration."""

    jwt_secret: str = Field(
        ...,
        description="Secret used to sign and verify access tokens",
    )
    jwt_algorithm: str = Field(
        "HS256",
        description="JWT signing algorithm",
    )
    jwt_expires_minutes: int = Field(
        1440,
        description="Access token lifetime in minutes",
        ge=1,
    )
    bcrypt_rounds: int = Field(
        10,
        description="bcrypt cost factor (log2 rounds) for password hashes",
        ge=4,
        le=31,
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Admission control configuration for the general and auth policies."""

    enabled: bool = Field(
        True,
        description="Enable per-client rate limiting",
    )
    window_ms: int = Field(
        900_000,
        description="General policy window duration in milliseconds",
        ge=1,
    )
    max_requests: int = Field(
        100,
        description="General policy maximum requests per window",
        ge=1,
    )
    auth_window_ms: int = Field(
        900_000,
        description="Auth policy window duration in milliseconds",
        ge=1,
    )
    auth_max_requests: int = Field(
        5,
        description="Auth policy maximum requests per window",
        ge=1,
    )
    auth_paths: str = Field(
        "/auth",
        description="Comma-separated path prefixes guarded by the auth policy",
    )
    exempt_paths: str = Field(
        "/health",
        description="Comma-separated exact paths that bypass rate limiting",
    )
    include_headers: bool = Field(
        True,
        description="Include RateLimit-* headers on responses",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For entry as the client address",
    )
    cleanup_interval_seconds: float = Field(
        60.0,
        description="Interval between evictions of idle rate limit windows",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class DatabaseSettings(BaseSettings):
    """Relational storage configuration."""

    url: str = Field(
        "sqlite:///./app.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        False,
        description="Log every SQL statement (development only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        case_sensitive=False,
    )


class UploadSettings(BaseSettings):
    """Image upload configuration."""

    dir: str = Field(
        "uploads",
        description="Directory where uploaded files are stored and served from",
    )
    max_file_size_mb: int = Field(
        5,
        description="Maximum size of a single uploaded file in MB",
        ge=1,
    )
    max_files: int = Field(
        5,
        description="Maximum number of files per multi-file upload",
        ge=1,
    )
    allowed_types: str = Field(
        "image/jpeg,image/png,image/gif,image/webp",
        description="Comma-separated content types accepted for upload",
    )

    model_config = SettingsConfigDict(
        env_prefix="UPLOAD_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        5_242_880,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )
    queue_enabled: bool = Field(
        True,
        description="Format and write log records on a background listener thread",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if required settings are missing.

    Environments:
    - development: Local development
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment; client messages for unexpected
      failures are redacted and traces are not logged
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    auth: AuthSettings = Field(default_factory=_build_auth_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    database: DatabaseSettings = Field(default_factory=_build_database_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    upload: UploadSettings = Field(default_factory=_build_upload_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
