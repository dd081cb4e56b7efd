"""
Configuration settings for subsync.

Uses Pydantic Settings to load environment variables for the local snapshot,
the remote PostgreSQL store, reminder scheduling, budget defaults and logging.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Local snapshot
    data_dir: Path = Field(Path(".subsync"), alias="SUBSYNC_DATA_DIR")
    snapshot_key: str = Field("subscriptions", alias="SUBSYNC_SNAPSHOT_KEY")

    # Remote store
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("subsync", alias="DB_NAME")
    remote_table: str = Field("subscriptions", alias="REMOTE_TABLE")
    remote_connect_timeout_s: int = Field(5, alias="REMOTE_CONNECT_TIMEOUT_S")
    remote_retry_attempts: int = Field(3, alias="REMOTE_RETRY_ATTEMPTS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(False, alias="JSON_LOGS")

    # Reminders
    reminder_offsets_days: List[int] = Field([3, 1, 0], alias="REMINDER_OFFSETS_DAYS")
    reminder_hour: int = Field(17, alias="REMINDER_HOUR")
    reminder_minute: int = Field(30, alias="REMINDER_MINUTE")
    reminder_timezone: str = Field("UTC", alias="REMINDER_TIMEZONE")
    usage_check_hour: int = Field(20, alias="USAGE_CHECK_HOUR")

    # Budget
    budget_monthly_limit: Optional[float] = Field(None, alias="BUDGET_MONTHLY_LIMIT")
    budget_notify_percentage: float = Field(80.0, alias="BUDGET_NOTIFY_PERCENTAGE")

    # Purchase gate
    free_tier_limit: int = Field(4, alias="FREE_TIER_LIMIT")
    unlocked: bool = Field(False, alias="SUBSYNC_UNLOCKED")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / "snapshot.json"

    @property
    def reminders_path(self) -> Path:
        return self.data_dir / "reminders.json"

    @property
    def usage_path(self) -> Path:
        return self.data_dir / "usage.json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
