"""Configuration management for SplitSettle."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Exchange rate API
    rates_api_url: str = "https://api.frankfurter.app"
    rates_api_timeout: float = 30.0

    # Rate caching
    current_rate_ttl_seconds: float = 300.0  # In-memory TTL for current rates
    rate_fetch_workers: int = 4  # Parallel currency groups per batch
    rate_retention_days: int = 365

    # Balance display
    display_currency: str = "USD"
    conversion_mode: Literal["off", "simple", "smart"] = "off"
    allow_mixed_currencies: bool = False  # Sum raw amounts when conversion is off

    # Database path
    database_path: Path = Path.home() / ".splitsettle" / "splitsettle.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the variables set "
            f"in your environment or .env file.\n"
            f"Error: {e}"
        ) from e
