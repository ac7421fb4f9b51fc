"""Create, remove and status flows reconciling profiles with a scheduler."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from keeper.config import BackupConfig, Schedule
from keeper.schedule.backends import new_handler
from keeper.schedule.diagnostics import DiagnosticSink
from keeper.schedule.elevation import (
    ElevationPolicy,
    Elevator,
    retry_elevated,
    run_with_elevation,
)
from keeper.schedule.errors import ScheduleError
from keeper.schedule.handler import SchedulerConfig, SchedulerHandler
from keeper.schedule.jobs import (
    build_create_set,
    build_remove_set,
    load_global_section,
    load_scheduler_config,
    require_schedules,
    resolve_schedulable,
)
from keeper.schedule.selector import select_profiles_and_groups

LEGACY_FLAG_WARNING = (
    "the --legacy flag is only temporary and will be removed in a future release"
)
_LOGGER = logging.getLogger(__name__)


class ScheduleFlags(BaseModel):
    """Schedule command-line switches."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    all: bool = False
    no_start: bool = False
    reload: bool = False
    legacy: bool = False


HandlerFactory = Callable[[SchedulerConfig], SchedulerHandler]


@dataclass
class ScheduleCommandContext:
    """Everything a schedule command needs, resolved by the CLI."""

    config: BackupConfig
    profile_name: str
    flags: ScheduleFlags = field(default_factory=ScheduleFlags)
    elevation: ElevationPolicy = field(default_factory=ElevationPolicy)
    diagnostics: DiagnosticSink = field(default_factory=DiagnosticSink)
    handler_factory: HandlerFactory = new_handler
    elevator: Elevator | None = None

    def selected_names(self) -> list[str]:
        """Return profile and group names selected by the command line.

        Returns:
            Ordered names.
        """
        return select_profiles_and_groups(
            self.config, self.profile_name, select_all=self.flags.all
        )

    def profile_filter(self) -> str:
        """Return the recorded-jobs filter: empty with ``--all``.

        Returns:
            Profile name or empty string.
        """
        return "" if self.flags.all else self.profile_name

    def run_elevated(self, operation: Callable[[], None]) -> None:
        """Run a handler call with one elevation retry.

        Args:
            operation: Handler call.
        """
        run_with_elevation(operation, self.elevation, elevator=self.elevator)

    def flush_diagnostics(self) -> None:
        """Collect configuration issues and emit every diagnostic."""
        for issue in self.config.drain_issues():
            self.diagnostics.warning(self.config.config_file, issue)
        self.diagnostics.flush()


@dataclass(frozen=True)
class _PendingJobs:
    scheduler_config: SchedulerConfig
    name: str
    jobs: list[Schedule]


def create_schedule(ctx: ScheduleCommandContext) -> None:
    """Install the declared schedules of every selected profile and group.

    Every name is resolved before anything is dispatched, so a resolution
    failure leaves the scheduler untouched. With ``--all`` a name without
    schedules is skipped instead of failing. Dispatch stops at the first
    failure; a permission failure is retried once elevated and the relaunch
    covers the remaining targets.

    Args:
        ctx: Schedule command context.

    Raises:
        ScheduleError: On the first resolution or dispatch failure.
    """
    try:
        pending: list[_PendingJobs] = []
        for name in ctx.selected_names():
            resolved = build_create_set(ctx.config, name, ctx.diagnostics)
            if not resolved.schedules and ctx.flags.all:
                continue
            require_schedules(resolved.schedules, name)
            _apply_flags(resolved.schedules, ctx.flags)
            pending.append(
                _PendingJobs(resolved.scheduler_config, name, resolved.schedules)
            )

        for item in pending:
            handler = ctx.handler_factory(item.scheduler_config)
            try:
                handler.create_jobs(item.jobs)
            except ScheduleError as exc:
                # the elevated relaunch reruns the whole command
                retry_elevated(exc, ctx.elevation, elevator=ctx.elevator)
                return
    finally:
        ctx.flush_diagnostics()


def remove_schedule(ctx: ScheduleCommandContext) -> None:
    """Uninstall schedules.

    Args:
        ctx: Schedule command context.

    Raises:
        ScheduleError: On resolution failure (legacy) or removal failure
            (current protocol).
    """
    try:
        if ctx.flags.legacy:
            _LOGGER.warning(LEGACY_FLAG_WARNING)
            _remove_legacy(ctx)
            return
        scheduler_config = load_scheduler_config(ctx.config)
        handler = ctx.handler_factory(scheduler_config)
        ctx.run_elevated(
            lambda: handler.remove_recorded(ctx.config.config_file, ctx.profile_filter())
        )
    finally:
        ctx.flush_diagnostics()


def status_schedule(ctx: ScheduleCommandContext) -> None:
    """Report status of schedules.

    Args:
        ctx: Schedule command context.

    Raises:
        ScheduleError: On resolution failure or fatal report failure.
    """
    try:
        if ctx.flags.legacy:
            _LOGGER.warning(LEGACY_FLAG_WARNING)
            if not ctx.flags.all:
                _status_legacy_single(ctx)
                return
            _status_legacy_all(ctx)
            if not load_global_section(ctx.config).legacy_status_reports_recorded:
                return
        scheduler_config = load_scheduler_config(ctx.config)
        handler = ctx.handler_factory(scheduler_config)
        ctx.run_elevated(
            lambda: handler.report_recorded(ctx.config.config_file, ctx.profile_filter())
        )
    finally:
        ctx.flush_diagnostics()


def _apply_flags(jobs: list[Schedule], flags: ScheduleFlags) -> None:
    """Mark jobs with handler options requested on the command line.

    Args:
        jobs: Declared schedules about to be created.
        flags: Command-line switches.
    """
    for job in jobs:
        if flags.no_start:
            job.set_flag("no-start", "")
        if flags.reload:
            job.set_flag("reload", "")


def _remove_legacy(ctx: ScheduleCommandContext) -> None:
    """Remove declared and undeclared jobs profile by profile.

    A dispatch failure is recorded and the next profile is still processed.

    Args:
        ctx: Schedule command context.
    """
    for name in ctx.selected_names():
        resolved = build_remove_set(ctx.config, name, ctx.diagnostics)
        handler = ctx.handler_factory(resolved.scheduler_config)
        try:
            ctx.run_elevated(lambda h=handler, j=resolved.schedules: h.remove_jobs(j))
        except ScheduleError as exc:
            ctx.diagnostics.error(name, exc)


def _status_legacy_single(ctx: ScheduleCommandContext) -> None:
    """Report status of the one requested profile or group.

    Args:
        ctx: Schedule command context.
    """
    name = ctx.profile_name
    resolved = resolve_schedulable(ctx.config, name, ctx.diagnostics)
    if not resolved.schedules:
        _LOGGER.warning("profile or group %s has no schedule", name)
        return
    handler = ctx.handler_factory(resolved.scheduler_config)
    ctx.run_elevated(lambda: handler.report_status(name, resolved.schedules))


def _status_legacy_all(ctx: ScheduleCommandContext) -> None:
    """Report status of every profile and group that declares schedules.

    Args:
        ctx: Schedule command context.
    """
    for name in ctx.selected_names():
        resolved = resolve_schedulable(ctx.config, name, ctx.diagnostics)
        if not resolved.schedules:
            continue
        _LOGGER.info("%s %r:", resolved.schedulable.kind.title(), name)
        handler = ctx.handler_factory(resolved.scheduler_config)
        try:
            ctx.run_elevated(
                lambda h=handler, n=name, j=resolved.schedules: h.report_status(n, j)
            )
        except ScheduleError as exc:
            ctx.diagnostics.error(name, exc)
