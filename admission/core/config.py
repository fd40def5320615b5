"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_admission_settings() -> "AdmissionSettings":
    """Build admission settings from environment.

    Pydantic Settings (v2) populates values from environment variables, but
    static type checkers treat fields as constructor arguments.
    """

    return AdmissionSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AdmissionSettings(BaseSettings):
    """Admission control (rate limiting) configuration."""

    enabled: bool = Field(
        True,
        description="Enable admission control on protected routes",
    )
    store_backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Counter store backend. 'memory' is per-process and meant for tests/local runs",
    )
    redis_url: str | None = Field(
        None,
        description="Redis connection URL; when unset every decision fails open",
    )
    key_prefix: str = Field(
        "rl",
        description="Prefix for counter keys in the shared store",
    )
    operation_timeout_seconds: float = Field(
        0.25,
        description="Upper bound for a single store round trip before failing open",
        gt=0,
    )
    connect_timeout_seconds: float = Field(
        1.0,
        description="Socket connect timeout for the store client",
        gt=0,
    )
    trust_forwarded_headers: bool = Field(
        True,
        description="Use X-Forwarded-For / X-Real-IP for identity (requires a sanitizing proxy)",
    )
    refresh_penalty: bool = Field(
        False,
        description="Re-impose the full penalty on every attempt made while blocked",
    )
    policy_overrides: str | None = Field(
        None,
        description="Comma-separated name=quota/window/penalty overrides, e.g. 'cart=100/60/30'",
    )
    purchase_daily_limit: int = Field(
        10,
        description="Maximum units per product per customer per UTC day",
        ge=1,
    )
    purchase_tracking_ttl_seconds: int = Field(
        48 * 60 * 60,
        description="TTL of purchase tracking counters (covers timezone edge cases)",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    admission: AdmissionSettings = Field(default_factory=_build_admission_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Nested settings are created via default_factory so env loading works.
settings = Settings()
