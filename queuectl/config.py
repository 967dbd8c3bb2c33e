"""
Application configuration using Pydantic Settings.
Loads configuration from QUEUECTL_* environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from queuectl.constants import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    DEFAULT_MAX_ERROR_LENGTH,
    DEFAULT_MAX_RETRIES,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUEUECTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///queuectl.db"
    database_echo: bool = False
    database_busy_timeout_seconds: float = 30.0
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Worker Configuration
    worker_count: int = Field(default=1, ge=1)
    worker_poll_interval_seconds: float = Field(default=1.0, gt=0)
    backoff_base: int = Field(default=DEFAULT_BACKOFF_BASE, ge=1)
    job_timeout_seconds: float = Field(default=DEFAULT_JOB_TIMEOUT_SECONDS, gt=0)
    max_error_length: int = Field(default=DEFAULT_MAX_ERROR_LENGTH, ge=1)

    # Job Defaults
    default_max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)

    # Reaper Configuration
    reaper_interval_seconds: float = 30.0
    stale_job_grace_seconds: float = 60.0

    # Observability
    log_level: str = "INFO"
    log_format: str = "console"  # json or console
    metrics_port: int | None = None
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "queuectl"

    @property
    def stale_job_after_seconds(self) -> float:
        """Age after which a processing job can only belong to a dead worker."""
        return self.job_timeout_seconds + self.stale_job_grace_seconds


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
