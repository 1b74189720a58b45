"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bgjob.constants import (
    DEFAULT_FUNCTION,
    DEFAULT_GEARMAN_PORT,
    DEFAULT_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_POLL_INTERVAL_SECONDS,
    NO_TIMEOUT,
    Backend,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Job-queue server
    backend: Backend = Backend.GEARMAN
    server_host: str = DEFAULT_HOST
    server_port: int | None = Field(default=None, ge=1, le=65535)
    server_timeout_ms: int = NO_TIMEOUT
    http_api_token: str | None = None

    # Submission and polling
    submit_function: str = DEFAULT_FUNCTION
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)

    # Observability
    log_level: str = "WARNING"
    log_format: str = "console"  # json or console
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "bgjob"
    metrics_textfile: str | None = None

    @property
    def default_port(self) -> int:
        """Port used for servers given without an explicit port."""
        if self.server_port is not None:
            return self.server_port
        if self.backend == Backend.HTTP:
            return DEFAULT_HTTP_PORT
        return DEFAULT_GEARMAN_PORT


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
