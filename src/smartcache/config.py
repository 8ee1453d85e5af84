"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates durations and provides typed access to settings.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        CACHE_DB_PATH: SQLite file backing the cache
        CACHE_DEFAULT_TTL_SECONDS: Default time-to-live for entries
        CACHE_MAINTENANCE_INTERVAL_SECONDS: Period of the maintenance sweep
        CACHE_SWEEP_TTL_SECONDS: Retention bound used by the sweep
            (defaults to CACHE_DEFAULT_TTL_SECONDS)
        LOG_LEVEL: Logging level
        LOG_FILE: Optional JSON-lines log file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    CACHE_DB_PATH: Path = Field(
        default=Path(".cache") / "smart_cache.sqlite",
        description="SQLite file backing the cache",
    )
    CACHE_DEFAULT_TTL_SECONDS: float = Field(
        default=600.0, gt=0, description="Default time-to-live for entries"
    )
    CACHE_MAINTENANCE_INTERVAL_SECONDS: float = Field(
        default=1800.0, gt=0, description="Period of the maintenance sweep"
    )
    CACHE_SWEEP_TTL_SECONDS: float | None = Field(
        default=None,
        gt=0,
        description="Age after which the sweep purges entries (defaults to the default TTL)",
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON-lines log file")

    @property
    def default_ttl(self) -> timedelta:
        return timedelta(seconds=self.CACHE_DEFAULT_TTL_SECONDS)

    @property
    def maintenance_interval(self) -> timedelta:
        return timedelta(seconds=self.CACHE_MAINTENANCE_INTERVAL_SECONDS)

    @property
    def sweep_ttl(self) -> timedelta:
        """Retention bound for the maintenance sweep."""
        seconds = self.CACHE_SWEEP_TTL_SECONDS
        if seconds is None:
            seconds = self.CACHE_DEFAULT_TTL_SECONDS
        return timedelta(seconds=seconds)

    @model_validator(mode="after")
    def validate_sweep_ttl(self) -> Settings:
        """A sweep shorter than the default TTL would purge entries still fresh by default."""
        if (
            self.CACHE_SWEEP_TTL_SECONDS is not None
            and self.CACHE_SWEEP_TTL_SECONDS < self.CACHE_DEFAULT_TTL_SECONDS
        ):
            raise ValueError(
                "CACHE_SWEEP_TTL_SECONDS must be >= CACHE_DEFAULT_TTL_SECONDS"
            )
        return self

    def display(self) -> dict[str, str | float | None]:
        """Return settings for display."""
        return {
            "CACHE_DB_PATH": str(self.CACHE_DB_PATH),
            "CACHE_DEFAULT_TTL_SECONDS": self.CACHE_DEFAULT_TTL_SECONDS,
            "CACHE_MAINTENANCE_INTERVAL_SECONDS": self.CACHE_MAINTENANCE_INTERVAL_SECONDS,
            "CACHE_SWEEP_TTL_SECONDS": self.CACHE_SWEEP_TTL_SECONDS,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
