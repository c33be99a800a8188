"""
Configuration management for the Product Requirements Management service.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Application
    app_name: str = Field(default="Product Requirements Management")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    request_timeout_seconds: float = Field(
        default=30.0, description="Deadline applied to every API request"
    )

    # Database
    database_url: str = Field(default="sqlite:///./requirements.db")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(
        default=80, description="pool_size + max_overflow bounds open connections"
    )
    db_statement_timeout_ms: int = Field(default=10000)
    storage_retry_attempts: int = Field(default=3)

    # Search cache
    cache_backend: str = Field(default="memory", description="'memory' or 'redis'")
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_max_connections: int = Field(default=10)
    search_cache_ttl_seconds: int = Field(default=300)
    health_check_timeout_seconds: float = Field(default=2.0)

    # Security
    secret_key: str = Field(default="change-me-in-production")
    access_token_expire_minutes: int = Field(default=60)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
