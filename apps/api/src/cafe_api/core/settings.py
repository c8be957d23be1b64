from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./cafe.db"

    # Loyalty ledger
    points_expiry_months: int = Field(default=12, ge=1)
    points_expiry_warning_days: int = Field(default=30, ge=1)
    points_earn_unit: int = Field(default=100, ge=1)

    # Scheduled jobs
    cron_api_key: str = ""
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    # Real-time notifications
    realtime_enabled: bool = True

    # Observability
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    tracing_enabled: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
