from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_path: Path = Field(
        default=Path("data/disaster-watch.db"), validation_alias="DB_PATH"
    )

    feed_url: str = Field(
        default="https://gdacs.org/xml/rss_7d.xml", validation_alias="FEED_URL"
    )
    user_agent: str = Field(
        default="disaster-watch/0.1", validation_alias="USER_AGENT"
    )
    poll_seconds: int = Field(default=30, validation_alias="POLL_SECONDS")
    fetch_timeout_seconds: float = Field(
        default=15.0, validation_alias="FETCH_TIMEOUT_SECONDS"
    )

    realtime_window_hours: float = Field(
        default=24.0, validation_alias="REALTIME_WINDOW_HOURS"
    )

    notify_threshold: int = Field(default=5, validation_alias="NOTIFY_THRESHOLD")
    notify_delay_seconds: float = Field(
        default=5.0, validation_alias="NOTIFY_DELAY_SECONDS"
    )
    email_relay_url: str | None = Field(
        default=None, validation_alias="EMAIL_RELAY_URL"
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
