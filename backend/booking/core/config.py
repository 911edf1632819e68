from __future__ import annotations

from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "Clinic Booking Engine"
    database_url: str = Field(
        default="sqlite:///./booking.db",
        description="SQLAlchemy compatible database URI",
    )
    sqlite_busy_timeout_seconds: float = 30.0
    transaction_timeout_ms: int = 5000

    # Retry policy for transient database failures (deadlock, serialization, lock timeout)
    booking_max_attempts: int = 3
    booking_retry_base_delay: float = 0.05
    booking_retry_max_delay: float = 1.0

    # Booking rules
    default_timezone: str = "Europe/Paris"
    min_duration_minutes: int = 5
    max_duration_minutes: int = 60 * 8
    require_practitioner: bool = True
    reminder_offsets_minutes: Dict[str, int] = Field(
        default_factory=lambda: {"email": 24 * 60, "sms": 2 * 60, "push": 15},
        description="Reminder channel -> minutes before the appointment start",
    )
    alternative_slot_count: int = 5

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
