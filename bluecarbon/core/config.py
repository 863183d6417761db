"""
Application configuration loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file = ".env",
        env_file_encoding = "utf-8",
        populate_by_name = True,
        extra = "ignore"
    )

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./bluecarbon.db", alias="DATABASE_URL")
    sqlite_busy_timeout: float = Field(default=30.0, alias="SQLITE_BUSY_TIMEOUT")

    # Application
    app_name: str = Field(default="Blue Carbon Ledger", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Ledger
    minting_enabled_default: bool = Field(default=True, alias="MINTING_ENABLED")
    block_build_max_retries: int = Field(default=5, alias="BLOCK_BUILD_MAX_RETRIES", ge=1)
    purchase_max_retries: int = Field(default=3, alias="PURCHASE_MAX_RETRIES", ge=1)

    # Reward policy (Blue Points per credit)
    buyer_points_per_credit: float = Field(default=5.0, alias="BUYER_POINTS_PER_CREDIT", ge=0)
    contributor_points_per_credit: float = Field(default=20.0, alias="CONTRIBUTOR_POINTS_PER_CREDIT", ge=0)

    # Audit log
    audit_queue_max_size: int = Field(default=10000, alias="AUDIT_QUEUE_MAX_SIZE", ge=1)
    audit_flush_interval: float = Field(default=5.0, alias="AUDIT_FLUSH_INTERVAL", gt=0)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
