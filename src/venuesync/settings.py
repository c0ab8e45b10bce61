"""Environment-driven configuration."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from venuesync.duration import parse_duration


class SyncSettings(BaseSettings):
    """Settings read from ``VENUESYNC_*`` environment variables (or ``.env``)."""

    model_config = SettingsConfigDict(
        env_prefix="VENUESYNC_",
        env_file=".env",
        extra="ignore",
    )

    api_base_url: str = "http://localhost:8000"
    api_key: str | None = None
    request_timeout: str = "30s"
    redis_url: str | None = None
    channel_prefix: str = "venuesync"
    default_stale_after: str = "3m"
    default_retain_for: str = "5m"

    @field_validator("request_timeout", "default_stale_after", "default_retain_for")
    @classmethod
    def _valid_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @property
    def request_timeout_seconds(self) -> float:
        return parse_duration(self.request_timeout) / 1000


__all__ = ["SyncSettings"]
