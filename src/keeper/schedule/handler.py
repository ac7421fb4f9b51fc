"""Scheduler handler contract and backend configuration."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from keeper.config import GlobalSection, Schedule, SchedulerBackend

DEFAULT_LAUNCHER: tuple[str, ...] = (sys.executable, "-m", "keeper.cli.cli")


class SchedulerConfig(BaseModel):
    """Backend selection derived from the global section."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    backend: SchedulerBackend = SchedulerBackend.APSCHEDULER
    database: Path = Path("~/.keeper/scheduler.sqlite").expanduser()
    crontab_binary: str = "crontab"
    misfire_grace_time: int = 30
    launcher: tuple[str, ...] = DEFAULT_LAUNCHER

    @classmethod
    def from_global(cls, section: GlobalSection) -> SchedulerConfig:
        """Build scheduler config from the global section.

        Args:
            section: Validated global section.

        Returns:
            Scheduler config.
        """
        settings = section.scheduler
        return cls(
            backend=settings.backend,
            database=Path(settings.database).expanduser(),
            crontab_binary=settings.crontab_binary,
            misfire_grace_time=settings.misfire_grace_time,
        )

    def command_line(self, config_file: str, schedule_name: str) -> list[str]:
        """Return the command a fired job executes.

        Args:
            config_file: Configuration file declaring the schedule.
            schedule_name: ``<command>@<profile-or-group>`` name.

        Returns:
            Argument vector.
        """
        return [
            *self.launcher,
            "--config",
            config_file,
            "run-schedule",
            schedule_name,
        ]


class SchedulerHandler(Protocol):
    """Backend installing, removing and reporting scheduled jobs.

    Implementations raise :class:`keeper.schedule.errors.ScheduleError` with
    ``PERMISSION_DENIED`` when elevated privileges are needed and
    ``HANDLER_FAILED`` for any other backend failure.
    """

    def create_jobs(self, jobs: Sequence[Schedule]) -> None:
        """Install or update jobs.

        Args:
            jobs: Declared schedules.
        """

    def remove_jobs(self, jobs: Sequence[Schedule]) -> None:
        """Uninstall jobs, ignoring those that are not installed.

        Args:
            jobs: Declared schedules and removal-only placeholders.
        """

    def report_status(self, profile_name: str, jobs: Sequence[Schedule]) -> None:
        """Display status of the given jobs.

        Args:
            profile_name: Profile or group name.
            jobs: Declared schedules.
        """

    def remove_recorded(self, config_file: str, profile_name: str) -> None:
        """Uninstall every recorded job of a configuration file.

        Args:
            config_file: Configuration file that installed the jobs.
            profile_name: Profile or group filter, empty for all.
        """

    def report_recorded(self, config_file: str, profile_name: str) -> None:
        """Display every recorded job of a configuration file.

        Args:
            config_file: Configuration file that installed the jobs.
            profile_name: Profile or group filter, empty for all.
        """
