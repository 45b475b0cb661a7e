"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.adapters.rate_limit.base import LimitConfig


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
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class RedisSettings(BaseSettings):
    """Connection settings for the shared counter store."""

    host: str = Field("localhost", description="Redis host name")
    port: int = Field(6379, description="Redis TCP port")
    password: str | None = Field(None, description="Redis AUTH password")
    db: int = Field(0, description="Redis logical database index")
    pool_size: int = Field(
        10,
        description="Maximum number of pooled connections",
        ge=1,
    )
    connect_timeout_seconds: float = Field(
        5.0,
        description="Timeout for establishing a connection",
    )
    socket_timeout_seconds: float = Field(
        3.0,
        description="Timeout for reading/writing on an open connection",
    )
    retry_on_timeout: bool = Field(
        True,
        description="Let the client retry a command once after a socket timeout",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log lines are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-identity rate limiting",
    )
    rate_limit_ip_rps: int = Field(
        10,
        description="Requests per second allowed for address-based identities",
        ge=1,
    )
    rate_limit_ip_block_seconds: int = Field(
        300,
        description="Block period for an address that exceeds its rate",
        ge=0,
    )
    rate_limit_token_rps: int = Field(
        100,
        description="Requests per second allowed for token-based identities",
        ge=1,
    )
    rate_limit_token_block_seconds: int = Field(
        600,
        description="Block period for a token that exceeds its rate",
        ge=0,
    )
    rate_limit_token_header: str = Field(
        "API_KEY",
        description="Request header carrying the API token",
    )
    rate_limit_failure_policy: Literal["fail_open", "fail_closed"] = Field(
        "fail_open",
        description=(
            "What to do when the counter store is unavailable: admit the request "
            "(fail_open) or reject it with 503 (fail_closed)"
        ),
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    storage_backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Counter store backend",
    )
    store_timeout_seconds: float = Field(
        0.5,
        description="Deadline applied to every counter store operation",
        gt=0,
    )
    rate_limit_check_timeout_seconds: float = Field(
        1.0,
        description="Deadline for one whole admission check (all store calls)",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    def ip_limit_config(self) -> LimitConfig:
        """Limit profile for requests identified by source address."""
        return LimitConfig(
            requests_per_second=self.rate_limit_ip_rps,
            block_duration=timedelta(seconds=self.rate_limit_ip_block_seconds),
        )

    def token_limit_config(self) -> LimitConfig:
        """Limit profile for requests carrying an API token."""
        return LimitConfig(
            requests_per_second=self.rate_limit_token_rps,
            block_duration=timedelta(seconds=self.rate_limit_token_block_seconds),
        )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
