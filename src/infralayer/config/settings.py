"""
Application settings using Pydantic.

Provides environment-based configuration loading with INFRALAYER_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Provider
    provider: str = "local"  # memory, local, http
    state_file: str = ".infralayer/state.json"

    # Deployment scope
    resource_group: str = "default"
    location: str = "eastus"
    environment: str = "development"

    # Executor
    max_parallelism: int = 4
    retry_max_attempts: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.5

    # HTTP control plane
    http_base_url: str | None = None
    http_token: str | None = None
    http_timeout: float = 30.0
    poll_interval: float = 2.0
    poll_timeout: float = 1800.0

    # Logging
    log_level: str = "WARNING"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "INFRALAYER_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
