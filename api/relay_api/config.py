"""Configuration settings for the relay API."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from relay_shared.config import BrokerSettings


class Settings(BrokerSettings):
    """API configuration settings."""

    # API settings
    api_title: str = "Search Relay API"
    api_description: str = "Accepts JSON messages and queues them for indexing"
    api_version: str = "0.1.0"
    api_host: str = Field(default="0.0.0.0", description="Bind address")
    api_port: int = Field(default=3000, description="Listen port")
    api_base_path: str = Field(default="/api/v1", description="Prefix for every route")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: API settings
    """
    return Settings()
