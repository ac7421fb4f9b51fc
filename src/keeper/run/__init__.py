"""Restic execution for fired schedules."""

from keeper.run.errors import RunError, RunErrorCode
from keeper.run.pipeline import (
    BatteryState,
    ResticRunner,
    RunOutcome,
    battery_blocks_run,
    build_restic_argv,
    build_restic_env,
    read_battery,
    summarize,
)

__all__ = [
    "BatteryState",
    "ResticRunner",
    "RunError",
    "RunErrorCode",
    "RunOutcome",
    "battery_blocks_run",
    "build_restic_argv",
    "build_restic_env",
    "read_battery",
    "summarize",
]
