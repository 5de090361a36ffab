# /convoflow/config/settings.py

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_database: str = "convoflow"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = False

    # Redis (optional - conversation locks fall back to in-process locks)
    redis_url: str | None = None

    # Automation engine
    business_timezone: str = "Asia/Riyadh"
    working_hours_start: int = 9
    working_hours_end: int = 18
    max_steps_per_message: int = 50
    stale_flow_timeout_minutes: int = 30
    stale_sweep_interval_minutes: int = 5
    conversation_lock_timeout_seconds: int = 30
    seed_default_scenarios: bool = True
    default_company_id: str = "1"

    # Escalation hand-off
    escalation_webhook_url: str | None = None

    # Deployment
    environment: str = Field(default="production")
    workers: int = 4
    api_version: str = "v1"
    rate_limit_per_minute: int = 100
    api_key: str | None = None
    cors_allowed_origins: str = "*"

    # ---------------- Validators ---------------- #

    @field_validator("business_timezone")
    @classmethod
    def timezone_must_exist(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("working_hours_start", "working_hours_end")
    @classmethod
    def hour_in_range(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("Working hours must be between 0 and 23")
        return v

    @field_validator("max_steps_per_message")
    @classmethod
    def step_cap_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_STEPS_PER_MESSAGE must be at least 1")
        return v

    @model_validator(mode="after")
    def working_hours_ordered(self):
        if self.working_hours_start > self.working_hours_end:
            raise ValueError("WORKING_HOURS_START must not be after WORKING_HOURS_END")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
