"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
copy-trading harvester, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
import socket
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-harvester"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class OkxSettings(BaseSettings):
    """OKX REST API settings."""

    model_config = SettingsConfigDict(env_prefix="OKX_", extra="ignore")

    base_url: str = Field(
        default="https://www.okx.com",
        alias="OKX_BASE_URL",
        description="OKX REST API root",
    )
    access_key: SecretStr | None = Field(
        default=None,
        alias="OKX_ACCESS_KEY",
        description="API key; requests are signed when key, secret and passphrase are all set",
    )
    secret_key: SecretStr | None = Field(
        default=None,
        alias="OKX_SECRET_KEY",
        description="API secret used for HMAC-SHA256 signing",
    )
    passphrase: SecretStr | None = Field(
        default=None,
        alias="OKX_PASSPHRASE",
        description="API passphrase",
    )
    clock_offset_ms: int = Field(
        default=0,
        alias="OKX_CLOCK_OFFSET_MS",
        description="Fixed correction (ms) added to the local clock when signing",
    )
    enable_time_sync: bool = Field(
        default=False,
        alias="OKX_ENABLE_TIME_SYNC",
        description="Align the signing clock with /api/v5/public/time at startup",
    )
    requests_per_second: float = Field(
        default=5.0,
        alias="OKX_REQUESTS_PER_SECOND",
        description="Client-side rate limit",
        gt=0,
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="OKX_TIMEOUT_SECONDS",
        description="Per-request timeout",
        gt=0,
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate API root format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("OKX_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_key and self.secret_key and self.passphrase)


class CrawlSettings(BaseSettings):
    """Crawl scheduling and retry settings."""

    model_config = SettingsConfigDict(env_prefix="CRAWL_", extra="ignore")

    worker_id: str = Field(
        default_factory=_default_worker_id,
        alias="CRAWL_WORKER_ID",
        description="Lease holder identity of this worker",
    )
    lease_ttl_seconds: int = Field(
        default=120,
        alias="CRAWL_LEASE_TTL_SECONDS",
        description="Lease time-to-live; renewed before every page",
        gt=0,
    )
    max_attempts: int = Field(
        default=5,
        alias="CRAWL_MAX_ATTEMPTS",
        description="Recorded errors after which a task is marked FAILED",
        ge=1,
    )
    page_retries: int = Field(
        default=2,
        alias="CRAWL_PAGE_RETRIES",
        description="Immediate retries of one page within a run",
        ge=0,
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="CRAWL_RETRY_BASE_DELAY_SECONDS",
        description="Base delay for exponential backoff between page retries",
        ge=0,
    )
    page_limit: int = Field(
        default=20,
        alias="CRAWL_PAGE_LIMIT",
        description="Rank rows per page (OKX allows at most 20)",
        ge=1,
        le=20,
    )
    inst_type: str = Field(
        default="SWAP",
        alias="CRAWL_INST_TYPE",
        description="Instrument type of the crawled rank list",
    )

    @field_validator("inst_type")
    @classmethod
    def validate_inst_type(cls, v: str) -> str:
        """Validate instrument type."""
        v = v.strip().upper()
        if v not in ("SWAP", "SPOT"):
            raise ValueError("CRAWL_INST_TYPE must be SWAP or SPOT")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from copytrade_harvester.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.crawl.worker_id)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    okx: OkxSettings = Field(
        default_factory=lambda: OkxSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    crawl: CrawlSettings = Field(
        default_factory=lambda: CrawlSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "okx": {
                "base_url": self.okx.base_url,
                "access_key": "(set)" if self.okx.access_key else "(not set)",
                "secret_key": "(set)" if self.okx.secret_key else "(not set)",
                "passphrase": "(set)" if self.okx.passphrase else "(not set)",
                "clock_offset_ms": str(self.okx.clock_offset_ms),
                "enable_time_sync": str(self.okx.enable_time_sync),
                "requests_per_second": str(self.okx.requests_per_second),
            },
            "crawl": {
                "worker_id": self.crawl.worker_id,
                "lease_ttl_seconds": str(self.crawl.lease_ttl_seconds),
                "max_attempts": str(self.crawl.max_attempts),
                "page_retries": str(self.crawl.page_retries),
                "page_limit": str(self.crawl.page_limit),
                "inst_type": self.crawl.inst_type,
            },
            "log_level": self.log_level,
        }

    def validate_requirements(self) -> None:
        """Refuse partially configured credentials.

        Signing needs all three of key, secret and passphrase; a partial set
        would silently fall back to unsigned requests.
        """
        creds = (self.okx.access_key, self.okx.secret_key, self.okx.passphrase)
        if any(creds) and not all(creds):
            raise ValueError("OKX_ACCESS_KEY/OKX_SECRET_KEY/OKX_PASSPHRASE must be set together")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when environment variables change.
    """
    get_settings.cache_clear()
