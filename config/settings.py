"""Configuration management using pydantic-settings."""
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class CacheStrategy(str, Enum):
    """Cache strategies selectable in the settings."""
    INTELLIGENT = "intelligent"
    AGGRESSIVE = "aggressive"
    CONSERVATIVE = "conservative"
    DISABLED = "disabled"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Meteoblue configuration
    api_key: Optional[str] = None
    api_base_url: str = "https://my.meteoblue.com/packages/basic-day"
    fetch_timeout_seconds: float = 30.0

    # Location
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    city_name: str = "Ihre Stadt"

    # Cache behaviour
    update_interval: int = Field(default=3, ge=1, le=24)    # hours
    fallback_hours: int = Field(default=24, ge=1, le=168)
    cache_strategy: CacheStrategy = CacheStrategy.INTELLIGENT
    cache_timezone: str = "UTC"  # zone of the hourly key bucket

    # Storage backends
    database_url: str = "sqlite:///./weather_cache.db"
    cache_directory: Path = Path("./cache")
    redis_url: Optional[str] = None

    # Background jobs
    scheduler_enabled: bool = True
    refresh_check_minutes: int = Field(default=60, ge=1)
    cleanup_interval_hours: int = Field(default=24, ge=1)
    cleanup_history_days: int = Field(default=90, ge=1)

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
