"""Configuration settings for the relay worker."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from relay_shared.config import BrokerSettings


class Settings(BrokerSettings):
    """Worker configuration settings."""

    # Elasticsearch settings
    elasticsearch_node: str = Field(default="http://localhost:9200", description="Elasticsearch node URL")
    elasticsearch_index: str = Field(default="data-index", description="Index relayed messages are written to")
    elasticsearch_username: Optional[str] = Field(default=None, description="Elasticsearch basic auth user")
    elasticsearch_password: Optional[str] = Field(default=None, description="Elasticsearch basic auth password")
    elasticsearch_timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")

    # Schedules (crontab expressions)
    transfer_schedule: str = Field(default="*/1 * * * *", description="Queue transfer job schedule")
    indexing_schedule: str = Field(default="*/1 * * * *", description="Indexing job schedule")
    heartbeat_schedule: str = Field(default="*/5 * * * *", description="Health check job schedule")

    # Batch sizes
    transfer_batch_size: int = Field(default=20, ge=1, description="Messages per transfer run")
    indexing_batch_size: int = Field(default=10, ge=1, description="Messages per indexing run")
    continuous_batch_size: int = Field(default=100, ge=1, description="Messages per continuous loop iteration")
    continuous_sub_batch_size: int = Field(default=20, ge=1, description="Concurrent publishes per sub-batch")

    # Continuous loop settings
    continuous_enabled: bool = Field(default=True, description="Run the continuous transfer loop")
    continuous_idle_interval: float = Field(default=5.0, ge=0, description="Wait after an empty batch in seconds")
    continuous_error_interval: float = Field(default=3.0, ge=0, description="Wait after a failed iteration in seconds")

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
        Settings: Worker settings
    """
    return Settings()
