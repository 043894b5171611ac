"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./data/barledger.db"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    webhook_rate_limit: str = "120/minute"

    # ==========================================================================
    # POS sales sync
    # ==========================================================================
    # Shared secret for the external scheduler; cron endpoint rejects everything when unset
    cron_secret: Optional[str] = None
    pos_request_timeout_seconds: float = 30.0
    sync_fallback_lookback_days: int = 7
    default_pos_timezone: str = "America/Chicago"
    default_closeout_hour: int = 3
    toast_api_base_url: str = "https://ws-api.toasttab.com"

    # Inventory settings cache
    settings_cache_ttl_seconds: int = 300

    @field_validator("default_closeout_hour")
    @classmethod
    def validate_closeout_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("DEFAULT_CLOSEOUT_HOUR must be between 0 and 23")
        return v

    @field_validator("pos_request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("POS_REQUEST_TIMEOUT_SECONDS must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
