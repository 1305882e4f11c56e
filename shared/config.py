"""
Shared configuration management for the Currency Converter services.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONVERTER_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Upstream rate provider
    upstream_base_url: str = "https://api.frankfurter.app"
    upstream_timeout_seconds: float = 30.0

    # Event store
    event_store_backend: Literal["memory", "postgres"] = "memory"
    postgres_dsn: str = "postgres://localhost:5432/converter"

    # Telemetry ingestion
    telemetry_queue_size: int = 1000
    telemetry_workers: int = 4
    telemetry_drain_timeout_seconds: float = 5.0

    # Dashboard
    top_devices_limit: int = 5
    series_default_start_date: str = "2005-01-31"


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
