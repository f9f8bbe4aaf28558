"""Application configuration using pydantic-settings."""

import re

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_UTC_OFFSET_RE = re.compile(r"^[+-]\d{2}:\d{2}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./portfolio.db"

    # Transaction history fetch
    SYNC_MAX_DAYS_PER_REQUEST: int = 31  # upstream limit per history request
    SYNC_REQUEST_DELAY_MS: int = 100  # pause between consecutive chunks
    SYNC_MAX_RETRIES: int = 3
    SYNC_RETRY_BASE_DELAY: float = 1.0  # seconds; retry n waits base * 2**n
    SYNC_FULL_LOOKBACK_MONTHS: int = 6
    SYNC_INCREMENTAL_LOOKBACK_MONTHS: int = 1
    EXCHANGE_UTC_OFFSET: str = "-05:00"

    # Instrument catalog
    INSTRUMENT_REFRESH_TTL_HOURS: int = 24
    DEFAULT_CURRENCY: str = "CAD"

    # Bulk sync
    BULK_SYNC_MAX_CONCURRENT: int = 2
    BULK_SYNC_BATCH_DELAY_SECONDS: float = 1.0

    # Retention and reporting
    SNAPSHOT_RETENTION_DAYS: int = 30
    SNAPSHOT_SECTOR_THRESHOLD_PERCENT: float = 0.5
    TRANSACTION_RETENTION_MONTHS: int = 24
    YIELD_ON_COST_DIVIDEND_ONLY: bool = True

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("EXCHANGE_UTC_OFFSET")
    @classmethod
    def validate_utc_offset(cls, v: str) -> str:
        """Require a fixed offset in ``±HH:MM`` form."""
        if not _UTC_OFFSET_RE.match(v):
            raise ValueError(f"EXCHANGE_UTC_OFFSET must look like -05:00, got {v!r}")
        return v

    @field_validator("SYNC_MAX_DAYS_PER_REQUEST", "SYNC_MAX_RETRIES", "BULK_SYNC_MAX_CONCURRENT")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v


settings = Settings()
