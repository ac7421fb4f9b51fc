"""Schedule reconciliation between profiles and scheduler backends."""

from keeper.schedule.diagnostics import (
    DiagnosticLevel,
    DiagnosticSink,
    ScheduleDiagnostic,
)
from keeper.schedule.elevation import (
    ElevationPolicy,
    SudoElevator,
    retry_elevated,
    run_with_elevation,
)
from keeper.schedule.errors import ScheduleError, ScheduleErrorCode
from keeper.schedule.handler import SchedulerConfig, SchedulerHandler
from keeper.schedule.jobs import (
    ResolvedSchedulable,
    build_create_set,
    build_remove_set,
    resolve_schedulable,
)
from keeper.schedule.reconciler import (
    ScheduleCommandContext,
    ScheduleFlags,
    create_schedule,
    remove_schedule,
    status_schedule,
)
from keeper.schedule.rehydrate import (
    ExecutionContext,
    apply_schedule_overrides,
    prepare_scheduled_run,
)
from keeper.schedule.selector import select_profiles_and_groups

__all__ = [
    "DiagnosticLevel",
    "DiagnosticSink",
    "ElevationPolicy",
    "ExecutionContext",
    "ResolvedSchedulable",
    "ScheduleCommandContext",
    "ScheduleDiagnostic",
    "ScheduleError",
    "ScheduleErrorCode",
    "ScheduleFlags",
    "SchedulerConfig",
    "SchedulerHandler",
    "SudoElevator",
    "apply_schedule_overrides",
    "build_create_set",
    "build_remove_set",
    "create_schedule",
    "prepare_scheduled_run",
    "remove_schedule",
    "resolve_schedulable",
    "retry_elevated",
    "run_with_elevation",
    "select_profiles_and_groups",
    "status_schedule",
]
