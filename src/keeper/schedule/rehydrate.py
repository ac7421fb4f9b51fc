"""Rebuild the run context of a fired schedule from its definition."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta

from keeper.config import (
    BackupConfig,
    ConfigError,
    LockMode,
    Schedulable,
    Schedule,
)
from keeper.schedule.errors import ScheduleError, ScheduleErrorCode

_LOGGER = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """Run context of one command, with overrides taken from its schedule."""

    command: str = ""
    profile_name: str = ""
    schedule_name: str = ""
    schedule: Schedule | None = None
    arguments: tuple[str, ...] = ()
    log_target: str = ""
    command_output: str = ""
    stop_on_battery: int = 0
    lock_wait: timedelta | None = None
    no_lock: bool = False


def parse_schedule_name(schedule_name: str) -> tuple[str, str]:
    """Split ``<command>@<profile-or-group-name>`` on the first ``@``.

    Args:
        schedule_name: Job identity token.

    Returns:
        Command and owner name.

    Raises:
        ScheduleError: With ``MALFORMED_IDENTITY`` when ``@`` is missing.
    """
    command, separator, owner = schedule_name.partition("@")
    if not separator:
        raise ScheduleError(
            ScheduleErrorCode.MALFORMED_IDENTITY,
            "the expected format of the schedule name is "
            "<command>@<profile-or-group-name>",
            data={"schedule": schedule_name},
        )
    return command, owner


def prepare_scheduled_run(
    config: BackupConfig,
    arguments: Sequence[str],
    context: ExecutionContext | None = None,
) -> ExecutionContext:
    """Resolve a fired schedule into its execution context.

    The owning profile or group is only loaded, not prepared. When it declares
    no schedule for the command the context keeps its defaults.

    Args:
        config: Configuration provider.
        arguments: ``run-schedule`` arguments, the schedule name first.
        context: Context to update, a new one when omitted.

    Returns:
        Execution context with command, owner and schedule overrides.

    Raises:
        ScheduleError: If the schedule name is missing or malformed, or its
            owner cannot be found or loaded.
    """
    if not arguments:
        raise ScheduleError(
            ScheduleErrorCode.MALFORMED_IDENTITY,
            "run-schedule command expects one argument: schedule name",
        )
    if context is None:
        context = ExecutionContext()
    schedule_name = arguments[0]
    command, owner = parse_schedule_name(schedule_name)
    context.command = command
    context.profile_name = owner
    context.schedule_name = schedule_name
    context.arguments = tuple(arguments[1:])

    schedulable = _load_owner(config, owner)
    schedule = schedulable.schedules().get(command)
    if schedule is not None:
        _LOGGER.debug("preparing scheduled %s %r", schedulable.kind, schedule_name)
        context.schedule = schedule
        apply_schedule_overrides(context, schedule)
    return context


def apply_schedule_overrides(context: ExecutionContext, schedule: Schedule) -> None:
    """Copy log, battery and lock policy of a schedule onto a context.

    Args:
        context: Context to update.
        schedule: Schedule of the fired job.
    """
    if schedule.log:
        context.log_target = schedule.log
    if schedule.command_output:
        context.command_output = schedule.command_output
    if schedule.ignore_on_battery_less_than > 0 and schedule.ignore_on_battery is not False:
        context.stop_on_battery = schedule.ignore_on_battery_less_than
    elif schedule.ignore_on_battery is True:
        context.stop_on_battery = 100
    if schedule.lock_mode == LockMode.DEFAULT:
        if schedule.lock_wait is not None and schedule.lock_wait > timedelta(0):
            context.lock_wait = schedule.lock_wait
    elif schedule.lock_mode == LockMode.IGNORE:
        context.no_lock = True


def _load_owner(config: BackupConfig, name: str) -> Schedulable:
    """Load a profile, or a group of that name, without preparing it.

    Args:
        config: Configuration provider.
        name: Profile or group name.

    Returns:
        Loaded profile or group.

    Raises:
        ScheduleError: ``LOAD_FAILED`` or ``NOT_FOUND``.
    """
    if config.has_profile(name):
        try:
            return config.get_profile(name)
        except ConfigError as exc:
            raise ScheduleError(
                ScheduleErrorCode.LOAD_FAILED,
                f"cannot load profile '{name}': {exc}",
                data={"name": name},
            ) from exc
    if config.has_profile_group(name):
        try:
            return config.get_profile_group(name)
        except ConfigError as exc:
            raise ScheduleError(
                ScheduleErrorCode.LOAD_FAILED,
                f"cannot load group '{name}': {exc}",
                data={"name": name},
            ) from exc
    raise ScheduleError(
        ScheduleErrorCode.NOT_FOUND,
        f"profile or group '{name}' not found",
        data={"name": name},
    )
