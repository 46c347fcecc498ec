"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Missing or invalid output folder / extraction frequency values do not fail
startup: the default is substituted and the key is recorded in
``Settings.defaulted_fields`` so the host can warn and write it back.

Usage:
    from utils.config import settings

    folder = settings.CSV_FOLDER
    interval = settings.EXTRACT_FREQUENCY
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import set_key
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CSV_FOLDER = "extractions"
DEFAULT_EXTRACT_FREQUENCY = 5


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Output Configuration
    CSV_FOLDER: str = Field(default=DEFAULT_CSV_FOLDER)

    # Scheduler Configuration
    EXTRACT_FREQUENCY: int = Field(default=DEFAULT_EXTRACT_FREQUENCY)
    RETRY_DELAY_MS: int = Field(default=5000, ge=0)
    EXTRACT_MAX_RETRIES: int = Field(default=0, ge=0)

    # Trading Service Configuration
    TRADING_API_URL: str = Field(default="")
    API_TIMEOUT: int = Field(default=30)
    SIMULATED_FAILURE_RATE: float = Field(default=0.1, ge=0.0, le=1.0)
    SIMULATED_TRADES: int = Field(default=2, ge=0)
    TRADING_TIMEZONE: str = Field(default="Europe/London")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")
    LOG_OUTPUT: str = Field(default="both")
    LOG_FILE: str = Field(default="diagnostics.log")

    # Application Metadata
    APP_NAME: str = Field(default="power-position")
    APP_VERSION: str = Field(default="0.1.0")

    # Keys replaced by their defaults while loading
    defaulted_fields: list[str] = Field(default_factory=list, exclude=True)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @model_validator(mode="before")
    @classmethod
    def substitute_defaults(cls, data: Any) -> Any:
        """Replace missing or invalid folder/frequency values with defaults."""
        if not isinstance(data, dict):
            return data

        defaulted = []

        folder = data.get("CSV_FOLDER")
        if not isinstance(folder, str) or not folder.strip():
            data["CSV_FOLDER"] = DEFAULT_CSV_FOLDER
            defaulted.append("CSV_FOLDER")

        try:
            freq = int(str(data.get("EXTRACT_FREQUENCY")).strip())
        except ValueError:
            freq = 0
        if freq <= 0:
            data["EXTRACT_FREQUENCY"] = DEFAULT_EXTRACT_FREQUENCY
            defaulted.append("EXTRACT_FREQUENCY")

        data["defaulted_fields"] = defaulted
        return data


def persist_defaults(settings: Settings, env_file: str | Path = ".env") -> list[str]:
    """Write defaulted keys back to the .env file.

    Args:
        settings: Loaded settings
        env_file: Path of the .env file to update (created if missing)

    Returns:
        Keys that were written
    """
    written = []
    for key in settings.defaulted_fields:
        value = str(getattr(settings, key))
        try:
            Path(env_file).touch(exist_ok=True)
            set_key(str(env_file), key, value, quote_mode="never")
            written.append(key)
        except OSError as e:
            logger.warning(
                "Error writing app settings",
                extra={"key": key, "env_file": str(env_file), "error": str(e)},
            )
    return written


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
