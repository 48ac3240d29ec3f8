"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50
    redis_pool_timeout_seconds: float = 20.0
    redis_socket_timeout_seconds: float = 5.0
    redis_retry_attempts: int = 3
    redis_retry_backoff_base_seconds: float = 0.1
    redis_retry_backoff_cap_seconds: float = 2.0
    key_prefix: str = "offload"

    # Worker Configuration
    worker_id: str | None = None
    worker_concurrency: int = 1
    worker_poll_interval_seconds: float = 0.5
    worker_max_poll_interval_seconds: float = 5.0
    worker_handler_modules: list[str] = []

    # Sweep Configuration
    job_timeout_seconds: float = 300.0
    reaper_interval_seconds: float = 10.0

    # Producer Configuration
    default_wait_timeout_seconds: float = 30.0
    cleanup_grace_seconds: int = 3600

    # Scaling Configuration
    scaling_policy: str = "fixed"  # fixed or elastic
    scaling_min_workers: int = 1
    scaling_max_workers: int = 8
    scaling_jobs_per_worker: int = 10
    scaling_interval_seconds: float = 5.0
    scaling_job_types: list[str] = []

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "offload"
    metrics_port: int | None = None
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
