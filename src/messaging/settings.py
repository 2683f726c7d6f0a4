from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MessagingSettings(BaseSettings):
    """
    Settings of the messaging core. Every value can be overridden by an
    environment variable with the `MESSAGING_` prefix (e.g. `MESSAGING_PAGE_SIZE`).
    """

    model_config = SettingsConfigDict(
        env_prefix="MESSAGING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_title: str = "EventzX"

    # Storage
    database_url: str = "sqlite+aiosqlite://"
    page_size: int = Field(default=15, gt=0)

    # Messaging service boundary
    io_timeout_sec: float = Field(default=10.0, gt=0)
    read_retry_attempts: int = Field(default=1, ge=0)

    # Realtime delivery
    ack_timeout_sec: float = Field(default=2.0, gt=0)
    max_queue_size: int = Field(default=1000, gt=0)
    realtime_poll_interval_sec: float = Field(default=0.05, gt=0)
    realtime_reconnect_attempts: int = Field(default=3, ge=0)
    realtime_reconnect_backoff_sec: float = Field(default=0.5, ge=0)
    rabbitmq_url: str | None = None


@lru_cache()
def get_settings() -> MessagingSettings:
    return MessagingSettings()
