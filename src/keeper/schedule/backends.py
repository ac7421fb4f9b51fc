"""Scheduler handler selection."""

from __future__ import annotations

from rich.console import Console

from keeper.config import SchedulerBackend
from keeper.schedule.apscheduler_handler import APSchedulerHandler
from keeper.schedule.crontab_handler import CrontabHandler
from keeper.schedule.handler import SchedulerConfig, SchedulerHandler


def new_handler(
    config: SchedulerConfig, *, console: Console | None = None
) -> SchedulerHandler:
    """Create the handler for the configured backend.

    Args:
        config: Scheduler backend configuration.
        console: Rich console used by status reports.

    Returns:
        Scheduler handler.
    """
    if config.backend == SchedulerBackend.CRONTAB:
        return CrontabHandler(config, console=console)
    return APSchedulerHandler(config, console=console)
