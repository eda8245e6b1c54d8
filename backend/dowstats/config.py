# backend/dowstats/config.py
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # environment: "dev" for running the service locally, "test" for pytest
    ENV: str = "dev"

    DATABASE_URL: str | None = None
    TEST_DATABASE_URL: str | None = None

    LOG_LEVEL: str = "INFO"

    # --- Remote point service (point directory + historical metrics) ---
    POINT_SERVICE_URL: str = "http://localhost:8081"
    POINT_SERVICE_TIMEOUT: float = Field(10.0, description="Per-request timeout in seconds.")

    # --- Aggregation engine ---
    # None lets the dispatcher size its pool from available CPUs.
    DISPATCH_MAX_WORKERS: int | None = None
    CATCHUP_PAGE_SIZE: int = 1000

    # --- Scheduler ---
    SCHEDULER_ENABLED: bool = False
    # IANA timezone name used by APScheduler (e.g., "UTC", "America/New_York").
    SCHEDULER_TZ: str = "UTC"
    CATCHUP_INTERVAL_MINUTES: int = 60
    CATCHUP_LOOKBACK_HOURS: int = 24

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("CATCHUP_PAGE_SIZE")
    @classmethod
    def _check_page_size(cls, v: int) -> int:
        if not 1 <= v <= 10000:
            raise ValueError("CATCHUP_PAGE_SIZE must be between 1 and 10000")
        return v

    @field_validator("DISPATCH_MAX_WORKERS")
    @classmethod
    def _check_workers(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("DISPATCH_MAX_WORKERS must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
