"""
Application configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development. Environment
    variables use the ``MEDPREDICT_`` prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDPREDICT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = Field(default="MedPredict", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # History persistence
    storage_backend: Literal["file", "memory"] = Field(
        default="file",
        description="Where prediction history snapshots are kept"
    )
    storage_dir: Path = Field(
        default=Path("data"),
        description="Directory holding snapshot files (file backend only)"
    )
    history_storage_key: str = Field(
        default="prediction-storage",
        min_length=1,
        description="Fixed key the history snapshot is stored under"
    )

    # Estimation
    estimator_latency_ms: int = Field(
        default=0,
        ge=0,
        description="Simulated estimator latency in milliseconds"
    )
    trend_limit: int = Field(
        default=10,
        ge=1,
        description="Number of recent predictions plotted in a trend series"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def get_safe_config_dict(self) -> dict:
        """Return configuration dict suitable for logging."""
        return self.model_dump(mode="json")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    Pass explicit settings to ``create_app`` for testability.
    """
    return Settings()
