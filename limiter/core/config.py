"""Limiter configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


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


# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_limiter_settings() -> "LimiterSettings":
    return LimiterSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


def _build_app_settings() -> "AppSettings":
    return AppSettings()  # type: ignore[call-arg]


class LimiterSettings(BaseSettings):
    """Defaults applied to every limiter that doesn't override them."""

    default_limit: int = Field(
        2500,
        description="Maximum number of calls per window",
        ge=1,
    )
    default_duration_ms: int = Field(
        60000,
        description="Window length in milliseconds",
        ge=1,
    )
    use_local_fallback: bool = Field(
        False,
        description="Serve calls from an in-process bucket while the store is unreachable",
    )
    key_prefix: str = Field(
        "limiter",
        description="Namespace for bucket keys in the shared store",
        min_length=1,
    )
    registry_max_limiters: int = Field(
        10000,
        description="Limiters a registry keeps before evicting the least recently used",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="LIMITER_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Connection parameters for the shared Redis store.

    When ``url`` is set it wins over host/port/unix_socket_path.
    """

    url: str | None = Field(
        None,
        description="Redis connection URL (redis://, rediss:// or unix://)",
    )
    host: str = Field("localhost", description="Redis host")
    port: int = Field(6379, description="Redis port", ge=1, le=65535)
    unix_socket_path: str | None = Field(
        None,
        description="Path to a Redis unix socket (overrides host/port)",
    )
    password: str | None = Field(None, description="Redis AUTH credential")
    db: int = Field(0, description="Redis logical database", ge=0)
    socket_timeout_seconds: float = Field(
        5.0,
        description="Per-command socket timeout",
        gt=0,
    )
    socket_connect_timeout_seconds: float = Field(
        5.0,
        description="Connection establishment timeout",
        gt=0,
    )
    retry_attempts: int = Field(
        3,
        description="Retries for a failed command before the error surfaces",
        ge=0,
    )
    retry_backoff_base_ms: int = Field(
        100,
        description="Base delay for exponential retry/reconnect backoff",
        ge=1,
    )
    retry_backoff_cap_ms: int = Field(
        5000,
        description="Upper bound for retry/reconnect backoff",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file when output=file")
    max_bytes: int | None = Field(
        None,
        description="Rotate the log file after this many bytes (None disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """HTTP service configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is malformed.
    """

    app_env: str = APP_ENV
    limiter: LimiterSettings = Field(default_factory=_build_limiter_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
