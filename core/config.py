"""Runtime settings loaded from the environment and an optional .env file.

Every setting can be overridden with a ``PANEL_`` prefixed variable; nested
sections use a double underscore, e.g. ``PANEL_SCHEDULER__MAX_RETRIES=5`` or
``PANEL_VALIDATION__NIGHT_START=23:00``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from schedule.recurrence import validate_timezone
from schedule.validator import ValidatorOptions

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ── Sections ──────────────────────────────────────────────────────────────────

class SchedulerConfig(BaseModel):
    check_interval_seconds: int = Field(60, ge=5, le=300)
    execution_tolerance_minutes: int = Field(5, ge=1, le=30)
    max_tasks_per_tick: int = Field(50, ge=1, le=100)
    max_retries: int = Field(3, ge=0, le=10)
    max_overdue_hours: int = Field(24, ge=1, le=168)
    overdue_cutoff_minutes: int = Field(60, ge=1, le=1440)
    default_timezone: str = "UTC"
    auto_start: bool = True

    @field_validator("default_timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        return validate_timezone(v)


class PanelConfig(BaseModel):
    base_url: str | None = None
    timeout_seconds: float = Field(10.0, gt=0, le=120)


# ── Root settings ─────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PANEL_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "test", "production"] = "development"
    log_level: str = "INFO"
    json_logs: bool = True

    database_url: str = "sqlite+aiosqlite:///panel_scheduler.db"
    audit_database_url: str | None = None
    # Requesters listed here are administrators; everyone else is a regular user.
    admin_users: list[str] = []

    scheduler: SchedulerConfig = SchedulerConfig()
    validation: ValidatorOptions = ValidatorOptions()
    panel: PanelConfig = PanelConfig()

    @field_validator("log_level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}, got '{v}'")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def resolved_audit_url(self) -> str:
        return self.audit_database_url or self.database_url


@lru_cache
def get_settings() -> Settings:
    return Settings()
