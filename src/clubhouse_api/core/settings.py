from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production", "test"] = "development"
    database_url: str = "sqlite+aiosqlite:///./clubhouse.db"
    database_echo: bool = False
    log_level: str = "INFO"

    # Admin API security
    admin_api_key: str = ""
    cors_allowed_origins: list[str] = Field(default_factory=list)

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _parse_origin_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Venue calendar
    venue_timezone: str = "Asia/Kuala_Lumpur"

    # Visit sessions
    visit_session_max_open_hours: int = 24
    visit_session_forced_hours: float = 5.0
    visit_default_hourly_rate: int = 10

    # Membership billing
    default_annual_fee_points: int = 1000
    renewal_waiver_days: int = 30
    registration_bonus_points: int = 0

    # Store access
    store_operation_timeout_seconds: float = 10.0

    # Membership maintenance scheduler
    membership_job_scheduler_enabled: bool = False
    membership_job_schedule_path: str = "config/schedules.toml"

    @field_validator("visit_session_forced_hours")
    @classmethod
    def _validate_forced_hours(cls, value: float) -> float:
        if value < 0:
            raise ValueError("visit_session_forced_hours must be non-negative")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
