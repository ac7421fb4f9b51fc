"""Compute the schedules to create or remove for one profile or group."""

from __future__ import annotations

from dataclasses import dataclass

from keeper.config import (
    BackupConfig,
    ConfigError,
    ConfigErrorCode,
    GlobalSection,
    Group,
    Profile,
    Schedulable,
    Schedule,
    ScheduleOrigin,
    new_default_schedule,
)
from keeper.schedule.diagnostics import DiagnosticSink
from keeper.schedule.errors import ScheduleError, ScheduleErrorCode
from keeper.schedule.handler import SchedulerConfig


@dataclass(frozen=True)
class ResolvedSchedulable:
    """Result of resolving one profile or group name."""

    scheduler_config: SchedulerConfig
    schedulable: Schedulable
    schedules: list[Schedule]


def resolve_schedulable(
    config: BackupConfig, name: str, diagnostics: DiagnosticSink
) -> ResolvedSchedulable:
    """Load a profile or group and its declared schedules.

    Profiles win over groups of the same name. Deprecation notices of a loaded
    profile are pushed into ``diagnostics``.

    Args:
        config: Configuration provider.
        name: Profile or group name.
        diagnostics: Command diagnostic sink.

    Returns:
        Scheduler config, loaded entity and its declared schedules.

    Raises:
        ScheduleError: If the global section is unavailable or the name cannot
            be resolved or loaded.
    """
    scheduler_config = load_scheduler_config(config)
    if config.has_profile(name):
        profile = _load_profile(config, name)
        for notice in profile.deprecation_notices:
            diagnostics.notice(name, notice)
        return ResolvedSchedulable(
            scheduler_config, profile, list(profile.schedules().values())
        )
    if config.has_profile_group(name):
        group = _load_group(config, name)
        return ResolvedSchedulable(
            scheduler_config, group, list(group.schedules().values())
        )
    raise ScheduleError(
        ScheduleErrorCode.NOT_FOUND,
        f"profile or group '{name}' not found",
        data={"name": name},
    )


def load_global_section(config: BackupConfig) -> GlobalSection:
    """Load the global section as a schedule error on failure.

    Args:
        config: Configuration provider.

    Returns:
        Global section.

    Raises:
        ScheduleError: If the global section cannot be loaded.
    """
    try:
        return config.get_global_section()
    except ConfigError as exc:
        raise ScheduleError(
            ScheduleErrorCode.CONFIG_UNAVAILABLE,
            f"cannot load global section: {exc}",
        ) from exc


def load_scheduler_config(config: BackupConfig) -> SchedulerConfig:
    """Build scheduler config from the global section.

    Args:
        config: Configuration provider.

    Returns:
        Scheduler backend configuration.
    """
    return SchedulerConfig.from_global(load_global_section(config))


def build_create_set(
    config: BackupConfig, name: str, diagnostics: DiagnosticSink
) -> ResolvedSchedulable:
    """Resolve the schedules that should be installed for one name.

    An empty schedule list is a valid result; callers decide whether it is
    fatal.

    Args:
        config: Configuration provider.
        name: Profile or group name.
        diagnostics: Command diagnostic sink.

    Returns:
        Resolution with declared schedules only.
    """
    return resolve_schedulable(config, name, diagnostics)


def build_remove_set(
    config: BackupConfig, name: str, diagnostics: DiagnosticSink
) -> ResolvedSchedulable:
    """Resolve the schedules to uninstall for one name.

    Every schedulable command without a declaration gets a removal-only
    placeholder appended after the declared schedules, since a job may still
    be installed from an earlier revision of the configuration.

    Args:
        config: Configuration provider.
        name: Profile or group name.
        diagnostics: Command diagnostic sink.

    Returns:
        Resolution with declared schedules followed by placeholders.
    """
    resolved = resolve_schedulable(config, name, diagnostics)
    schedules = list(resolved.schedules)
    declared = {item.origin.command for item in schedules}
    defaults = load_global_section(config).schedule_defaults
    for command in resolved.schedulable.schedulable_commands():
        if command in declared:
            continue
        schedules.append(
            new_default_schedule(
                ScheduleOrigin(name, command),
                defaults=defaults,
                config_file=config.config_file,
            )
        )
    return ResolvedSchedulable(
        resolved.scheduler_config, resolved.schedulable, schedules
    )


def require_schedules(schedules: list[Schedule], name: str) -> None:
    """Fail when a profile or group declares no schedule.

    Args:
        schedules: Declared schedules.
        name: Profile or group name.

    Raises:
        ScheduleError: With ``NO_SCHEDULE_FOUND`` when empty.
    """
    if not schedules:
        raise ScheduleError(
            ScheduleErrorCode.NO_SCHEDULE_FOUND,
            f"no schedule found for profile '{name}'",
            data={"name": name},
        )


def _load_profile(config: BackupConfig, name: str) -> Profile:
    try:
        return config.get_profile(name)
    except ConfigError as exc:
        if exc.code == ConfigErrorCode.NOT_FOUND:
            raise ScheduleError(
                ScheduleErrorCode.NOT_FOUND,
                f"profile '{name}': not found",
                data={"name": name},
            ) from exc
        raise ScheduleError(
            ScheduleErrorCode.LOAD_FAILED,
            f"cannot load profile '{name}': {exc}",
            data={"name": name},
        ) from exc


def _load_group(config: BackupConfig, name: str) -> Group:
    try:
        return config.get_profile_group(name)
    except ConfigError as exc:
        if exc.code == ConfigErrorCode.NOT_FOUND:
            raise ScheduleError(
                ScheduleErrorCode.NOT_FOUND,
                f"group '{name}' not found",
                data={"name": name},
            ) from exc
        raise ScheduleError(
            ScheduleErrorCode.LOAD_FAILED,
            f"cannot load group '{name}': {exc}",
            data={"name": name},
        ) from exc
