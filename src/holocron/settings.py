"""
User settings -- auto-sync schedule, idle lock, sync remote.

Stored as YAML at ``.holocron/settings.yaml``. Nothing here is secret.
A broken file never blocks the app: it logs a warning and defaults apply.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import HOLOCRON_DIR

logger = logging.getLogger("holocron.settings")

SETTINGS_FILE = f"{HOLOCRON_DIR}/settings.yaml"
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class ScheduleConfig(BaseModel):
    """Auto-sync triggers. Days are 0-6 with 0 = Sunday."""

    model_config = ConfigDict(populate_by_name=True)

    interval_enabled: bool = Field(default=False, alias="intervalEnabled")
    interval_minutes: int = Field(default=30, ge=1, le=1440, alias="intervalMinutes")
    calendar_enabled: bool = Field(default=False, alias="calendarEnabled")
    time_of_day: str = Field(default="17:00", alias="timeOfDay")
    days_of_week: list[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4, 5, 6], alias="daysOfWeek"
    )

    @field_validator("time_of_day")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not _TIME_RE.match(value):
            raise ValueError("time of day must be HH:MM (24h)")
        return value

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError("days of week must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))


class LockConfig(BaseModel):
    """Idle lock behaviour."""

    lock_on_idle: bool = True
    idle_timeout_seconds: float = Field(default=15 * 60, gt=0)
    warn_before_lock: bool = True
    warning_seconds: float = Field(default=60, ge=0)
    check_interval_seconds: float = Field(default=1.0, gt=0)


class SyncSettings(BaseModel):
    """Where and how syncs go."""

    remote: str = "origin"
    branch: str = ""
    auto_message_prefix: str = "Auto-sync"
    scheduled_message_prefix: str = "Scheduled sync"


class HolocronSettings(BaseModel):
    """All user settings for one repository."""

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)


def load_settings(repo_root: Path) -> HolocronSettings:
    """Load settings from disk, falling back to defaults."""
    settings_file = Path(repo_root) / SETTINGS_FILE
    if settings_file.exists():
        try:
            data = yaml.safe_load(settings_file.read_text(encoding="utf-8")) or {}
            return HolocronSettings.model_validate(data)
        except (yaml.YAMLError, ValidationError, ValueError) as exc:
            logger.warning("Failed to load settings: %s", exc)
    return HolocronSettings()


def save_settings(repo_root: Path, settings: HolocronSettings) -> Path:
    """Persist settings as YAML."""
    settings_file = Path(repo_root) / SETTINGS_FILE
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json")
    settings_file.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    return settings_file
