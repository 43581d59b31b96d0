"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Solana tax tracker, loading and validating environment variables at
startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from solana_tax_tracker.ledger.models import HoldingPeriodPolicy, ShortfallPolicy

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

PUBLIC_MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="PostgreSQL connection string (persistence is disabled when unset)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate database URL format."""
        if v is None:
            return v
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL (or sqlite+aiosqlite) connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class SolanaRpcSettings(BaseSettings):
    """Solana JSON-RPC endpoint settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default=PUBLIC_MAINNET_RPC_URL,
        alias="SOLANA_RPC_URL",
        description="Primary (provider) Solana RPC endpoint, may embed an API key",
    )
    fallback_rpc_url: str | None = Field(
        default=PUBLIC_MAINNET_RPC_URL,
        alias="SOLANA_FALLBACK_RPC_URL",
        description="Generic public RPC used when the primary signature listing fails",
    )
    timeout_seconds: float = Field(
        default=30.0,
        alias="SOLANA_RPC_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Per-request HTTP timeout",
    )
    commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed",
        alias="SOLANA_RPC_COMMITMENT",
        description="Commitment level for reads",
    )
    max_requests_per_second: float = Field(
        default=2.0,
        alias="SOLANA_RPC_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Minimum spacing between provider calls, expressed as a rate",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class IngestionSettings(BaseSettings):
    """Signature pagination and transaction detail fetch settings."""

    model_config = SettingsConfigDict(env_prefix="INGESTION_", extra="ignore")

    page_size: int = Field(
        default=50,
        alias="INGESTION_PAGE_SIZE",
        ge=1,
        le=1000,
        description="Signatures requested per page",
    )
    max_signatures: int = Field(
        default=5000,
        alias="INGESTION_MAX_SIGNATURES",
        ge=1,
        le=1_000_000,
        description="Hard cap on signatures collected per wallet",
    )
    max_empty_page_run: int = Field(
        default=3,
        alias="INGESTION_MAX_EMPTY_PAGE_RUN",
        ge=1,
        le=100,
        description="Consecutive pages without in-window signatures before stopping",
    )
    detail_concurrency: int = Field(
        default=10,
        alias="INGESTION_DETAIL_CONCURRENCY",
        ge=1,
        le=10,
        description="Maximum concurrent transaction detail requests",
    )
    request_delay_seconds: float = Field(
        default=0.5,
        alias="INGESTION_REQUEST_DELAY_SECONDS",
        ge=0.0,
        le=10.0,
        description="Fixed delay after each transaction detail request",
    )
    page_max_retries: int = Field(
        default=5,
        alias="INGESTION_PAGE_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retries for a signature page request",
    )
    page_initial_delay_seconds: float = Field(
        default=2.0,
        alias="INGESTION_PAGE_INITIAL_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Initial backoff for a signature page request",
    )
    detail_max_retries: int = Field(
        default=3,
        alias="INGESTION_DETAIL_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retries for a single transaction detail request",
    )
    detail_initial_delay_seconds: float = Field(
        default=1.0,
        alias="INGESTION_DETAIL_INITIAL_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Initial backoff for a transaction detail request",
    )
    inter_wallet_delay_seconds: float = Field(
        default=2.0,
        alias="INGESTION_INTER_WALLET_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause between successive wallets in the processing queue",
    )


class CacheSettings(BaseSettings):
    """Transaction cache settings."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", extra="ignore")

    key_prefix: str = Field(
        default="solana_tx_",
        alias="CACHE_KEY_PREFIX",
        description="Redis key prefix for cached wallet data",
    )
    ttl_seconds: int = Field(
        default=24 * 3600,
        alias="CACHE_TTL_SECONDS",
        ge=1,
        le=30 * 24 * 3600,
        description="Age after which cached entries are evicted on read",
    )
    bypass: bool = Field(
        default=False,
        alias="CACHE_BYPASS",
        description="Treat every cache read as a miss",
    )


class ClassifierSettings(BaseSettings):
    """Transaction classifier settings."""

    model_config = SettingsConfigDict(env_prefix="CLASSIFIER_", extra="ignore")

    dust_threshold_lamports: int = Field(
        default=5000,
        alias="CLASSIFIER_DUST_THRESHOLD_LAMPORTS",
        ge=0,
        le=1_000_000_000,
        description="Native deltas at or below this magnitude are classified as gas",
    )


class LedgerSettings(BaseSettings):
    """Cost-basis ledger and tax summary settings."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_", extra="ignore")

    shortfall_policy: ShortfallPolicy = Field(
        default=ShortfallPolicy.ZERO_GAIN,
        alias="LEDGER_SHORTFALL_POLICY",
        description="How disposals exceeding open lots are handled",
    )
    holding_period_policy: HoldingPeriodPolicy = Field(
        default=HoldingPeriodPolicy.EARLIEST_LOT,
        alias="LEDGER_HOLDING_PERIOD_POLICY",
        description="Whether a disposal is split per consumed lot",
    )
    long_term_days: int = Field(
        default=365,
        alias="LEDGER_LONG_TERM_DAYS",
        ge=1,
        le=3650,
        description="Holding period at or above which a gain is long-term",
    )
    short_term_rate: Decimal = Field(
        default=Decimal("0.30"),
        alias="LEDGER_SHORT_TERM_RATE",
        ge=0,
        le=1,
        description="Illustrative short-term tax rate for summaries",
    )
    long_term_rate: Decimal = Field(
        default=Decimal("0.15"),
        alias="LEDGER_LONG_TERM_RATE",
        ge=0,
        le=1,
        description="Illustrative long-term tax rate for summaries",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from solana_tax_tracker.config import get_settings

        settings = get_settings()
        print(settings.rpc.rpc_url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    rpc: SolanaRpcSettings = Field(
        default_factory=lambda: SolanaRpcSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ingestion: IngestionSettings = Field(
        default_factory=lambda: IngestionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    cache: CacheSettings = Field(
        default_factory=lambda: CacheSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    classifier: ClassifierSettings = Field(
        default_factory=lambda: ClassifierSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ledger: LedgerSettings = Field(
        default_factory=lambda: LedgerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

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
            "database_url": self._redact_url(self.database.url) if self.database.url else "(not set)",
            "redis_url": self._redact_url(self.redis.url),
            "rpc": {
                "rpc_url": self._redact_query(self.rpc.rpc_url),
                "fallback_rpc_url": (
                    self._redact_query(self.rpc.fallback_rpc_url) if self.rpc.fallback_rpc_url else "(not set)"
                ),
                "commitment": self.rpc.commitment,
                "timeout_seconds": str(self.rpc.timeout_seconds),
            },
            "ingestion": {
                "page_size": str(self.ingestion.page_size),
                "max_signatures": str(self.ingestion.max_signatures),
                "detail_concurrency": str(self.ingestion.detail_concurrency),
            },
            "cache": {
                "key_prefix": self.cache.key_prefix,
                "ttl_seconds": str(self.cache.ttl_seconds),
                "bypass": str(self.cache.bypass),
            },
            "ledger": {
                "shortfall_policy": self.ledger.shortfall_policy.value,
                "holding_period_policy": self.ledger.holding_period_policy.value,
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url

    @staticmethod
    def _redact_query(url: str) -> str:
        """Redact the query string, where RPC providers carry API keys."""
        if "?" in url:
            return f"{url.split('?', 1)[0]}?***"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
