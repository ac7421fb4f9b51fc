"""Runtime schedule definitions handed to scheduler handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from keeper.config.models import LockMode, ScheduleDefaults, ScheduleSection


@dataclass(frozen=True)
class ScheduleOrigin:
    """Identity of one schedule: owning profile or group plus command."""

    name: str
    command: str

    def __str__(self) -> str:
        """Return the schedule name used by handlers and ``run-schedule``.

        Returns:
            ``<command>@<name>`` string.
        """
        return f"{self.command}@{self.name}"


@dataclass
class Schedule:
    """One job definition for a profile or group command."""

    origin: ScheduleOrigin
    config_file: str = ""
    at: tuple[str, ...] = ()
    log: str = ""
    command_output: str = ""
    ignore_on_battery: bool | None = None
    ignore_on_battery_less_than: int = 0
    lock_mode: LockMode = LockMode.DEFAULT
    lock_wait: timedelta | None = None
    flags: dict[str, str] = field(default_factory=dict)
    removal_only: bool = False

    @property
    def name(self) -> str:
        """Schedule name (``<command>@<profile-or-group>``)."""
        return str(self.origin)

    def set_flag(self, name: str, value: str) -> None:
        """Set one handler option.

        Args:
            name: Flag name, e.g. ``no-start``.
            value: Flag value, empty for boolean flags.
        """
        self.flags[name] = value

    def has_flag(self, name: str) -> bool:
        """Return whether one handler option is set.

        Args:
            name: Flag name.

        Returns:
            ``True`` when the flag is present.
        """
        return name in self.flags

    @classmethod
    def from_section(
        cls,
        origin: ScheduleOrigin,
        section: ScheduleSection,
        *,
        defaults: ScheduleDefaults,
        config_file: str,
    ) -> Schedule:
        """Build a declared schedule, filling unset fields from global defaults.

        Args:
            origin: Schedule identity.
            section: Declared schedule section.
            defaults: Global schedule defaults.
            config_file: Declaring configuration file.

        Returns:
            Declared schedule.
        """
        return cls(
            origin=origin,
            config_file=config_file,
            at=section.at,
            log=_pick(section.log, defaults.log),
            command_output=_pick(section.command_output, defaults.command_output),
            ignore_on_battery=_pick(
                section.ignore_on_battery, defaults.ignore_on_battery
            ),
            ignore_on_battery_less_than=_pick(
                section.ignore_on_battery_less_than,
                defaults.ignore_on_battery_less_than,
            ),
            lock_mode=_pick(section.lock_mode, defaults.lock_mode),
            lock_wait=_pick(section.lock_wait, defaults.lock_wait),
        )


def new_default_schedule(
    origin: ScheduleOrigin,
    *,
    defaults: ScheduleDefaults,
    config_file: str,
) -> Schedule:
    """Build a removal-only placeholder for an undeclared command.

    Args:
        origin: Identity of the job that may still be installed.
        defaults: Global schedule defaults.
        config_file: Configuration file owning the profile or group.

    Returns:
        Placeholder schedule marked ``removal_only``.
    """
    return Schedule(
        origin=origin,
        config_file=config_file,
        log=defaults.log,
        command_output=defaults.command_output,
        ignore_on_battery=defaults.ignore_on_battery,
        ignore_on_battery_less_than=defaults.ignore_on_battery_less_than,
        lock_mode=defaults.lock_mode,
        lock_wait=defaults.lock_wait,
        removal_only=True,
    )


def _pick[T](value: T | None, default: T) -> T:
    return default if value is None else value
