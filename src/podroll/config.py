"""Central configuration management using pydantic-settings.

All configuration is loaded from environment variables with sensible defaults.
Create a .env file for local development (see .env.example).
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Remote aggregator and sync schedule configuration.

    Durations are in milliseconds.
    """

    model_config = SettingsConfigDict(env_prefix="PODROLL_", env_file=".env", extra="ignore")

    episodes_url: str = Field(default="", description="greader-style episode list URL")
    opml_url: str = Field(default="", description="OPML subscription list URL")
    sync_interval: int = Field(default=900_000, gt=0, description="Interval between syncs (ms)")
    initial_delay: int = Field(default=5_000, ge=0, description="Delay before the first sync (ms)")
    fetch_count: int = Field(default=200, gt=0, description="Items to request from the aggregator")
    max_episodes: int = Field(default=200, gt=0, description="Max episodes kept per sync batch")
    fetch_timeout: int = Field(default=15_000, gt=0, description="HTTP timeout per fetch (ms)")
    mount_path: str = Field(default="/podrollapi", description="URL prefix for all routes")
    user_agent: str = Field(default="Podroll/1.0", description="User-Agent sent upstream")


class StorageSettings(BaseSettings):
    """Cache database configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", env_file=".env", extra="ignore")

    url: str = Field(
        default="sqlite:///./podroll.db",
        description="SQLAlchemy database URL (empty disables the store)",
    )


class Settings(BaseSettings):
    """Main application settings aggregating all config sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    # Sub-configurations
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings loaded from environment.
    """
    return Settings()
