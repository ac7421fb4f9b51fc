"""Global section models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from keeper.config.models import ScheduleDefaults


class SchedulerBackend(StrEnum):
    """Supported scheduler backend identifiers."""

    APSCHEDULER = "apscheduler"
    CRONTAB = "crontab"


class SchedulerSettings(BaseModel):
    """Scheduler backend selection and parameters."""

    model_config = ConfigDict(extra="forbid")

    backend: SchedulerBackend = SchedulerBackend.APSCHEDULER
    database: str = "~/.keeper/scheduler.sqlite"
    crontab_binary: str = "crontab"
    misfire_grace_time: int = Field(default=30, ge=1)


class GlobalSection(BaseModel):
    """Root ``global`` section of the configuration file."""

    model_config = ConfigDict(extra="forbid")

    restic_binary: str = "restic"
    legacy_status_reports_recorded: bool = True
    scheduler: SchedulerSettings = SchedulerSettings()
    schedule_defaults: ScheduleDefaults = ScheduleDefaults()
