"""
Centralized settings for conveyor.

All fields can be set via ``CONVEYOR_*`` environment variables (e.g.
``CONVEYOR_DATABASE_PATH=/var/lib/conveyor.db``) or a ``.env`` file.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConveyorSettings(BaseSettings):
    """Process-wide configuration for stores, workers, triggers and surfaces."""

    model_config = SettingsConfigDict(
        env_prefix="CONVEYOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: str = Field(default="conveyor.db", description="SQLite file, or ':memory:'")
    busy_timeout_ms: int = Field(default=5000, ge=0)

    # ── Worker ───────────────────────────────────────────────────
    worker_poll_interval: float = Field(default=2.0, gt=0)
    worker_batch_size: int = Field(default=10, ge=1)
    worker_threads: int = Field(default=4, ge=1)
    wakeup_queue_size: int = Field(default=1000, ge=1, description="Pending wake-up hints kept in process")

    # ── Retry ────────────────────────────────────────────────────
    default_max_attempts: int = Field(default=3, ge=1)
    retry_backoff_ms: int = Field(default=1000, gt=0)
    retry_max_backoff_ms: int = Field(default=3_600_000, gt=0)

    # ── Triggers ─────────────────────────────────────────────────
    trigger_paths: list[str] = Field(default_factory=list)
    trigger_backoff_ms: int = Field(default=60_000, gt=0)
    tool_timeout_seconds: float | None = Field(default=None)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    # ── API ──────────────────────────────────────────────────────
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8600)
    api_prefix: str = Field(default="/api/v1")

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"


@lru_cache(maxsize=1)
def get_settings() -> ConveyorSettings:
    """Load and cache settings from the environment."""
    return ConveyorSettings()


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, or after changing the environment)."""
    get_settings.cache_clear()


__all__ = ["ConveyorSettings", "get_settings", "clear_settings_cache"]
