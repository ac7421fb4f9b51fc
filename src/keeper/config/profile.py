"""Profiles and groups: the entities that can own scheduled jobs."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import ClassVar, Protocol

from keeper.config.models import (
    SCHEDULABLE_COMMANDS,
    GroupSection,
    ProfileSection,
    ScheduleDefaults,
    ScheduleSection,
)
from keeper.config.schedule import Schedule, ScheduleOrigin


class Schedulable(Protocol):
    """Read-only view shared by profiles and groups."""

    name: str
    kind: ClassVar[str]

    def schedules(self) -> dict[str, Schedule]:
        """Return declared schedules keyed by command."""

    def schedulable_commands(self) -> tuple[str, ...]:
        """Return every command that can be scheduled for this entity."""


@dataclass(frozen=True)
class Profile:
    """Loaded (but not prepared) backup profile."""

    kind: ClassVar[str] = "profile"

    name: str
    section: ProfileSection
    declared: Mapping[str, Schedule] = field(default_factory=dict)
    deprecation_notices: tuple[str, ...] = ()

    def schedules(self) -> dict[str, Schedule]:
        """Return declared schedules keyed by command.

        Returns:
            Command to schedule mapping.
        """
        return dict(self.declared)

    def schedulable_commands(self) -> tuple[str, ...]:
        """Return commands a profile can schedule.

        Returns:
            Ordered command names.
        """
        return SCHEDULABLE_COMMANDS

    def command_args(self, command: str) -> tuple[str, ...]:
        """Return extra restic arguments declared for one command.

        Args:
            command: Restic command name.

        Returns:
            Declared arguments, empty when the command has no section.
        """
        section = self.section.commands.get(command)
        return section.args if section is not None else ()


@dataclass(frozen=True)
class Group:
    """Loaded group of profiles."""

    kind: ClassVar[str] = "group"

    name: str
    section: GroupSection
    declared: Mapping[str, Schedule] = field(default_factory=dict)

    @property
    def profiles(self) -> tuple[str, ...]:
        """Member profile names in declaration order."""
        return self.section.profiles

    def schedules(self) -> dict[str, Schedule]:
        """Return declared schedules keyed by command.

        Returns:
            Command to schedule mapping.
        """
        return dict(self.declared)

    def schedulable_commands(self) -> tuple[str, ...]:
        """Return commands a group can schedule.

        Returns:
            Ordered command names.
        """
        return SCHEDULABLE_COMMANDS


def build_profile(
    name: str,
    section: ProfileSection,
    *,
    defaults: ScheduleDefaults,
    config_file: str,
    issues: list[str],
) -> Profile:
    """Build a profile, converting deprecated command-level schedules.

    Args:
        name: Profile name.
        section: Validated profile section.
        defaults: Global schedule defaults.
        config_file: Declaring configuration file.
        issues: Configuration issue accumulator.

    Returns:
        Loaded profile.
    """
    sections = dict(section.schedules)
    notices: list[str] = []
    for command, command_section in section.commands.items():
        legacy = command_section.legacy_schedule()
        if legacy is None:
            continue
        if command in sections:
            issues.append(
                f"profile '{name}': '{command}.schedule' ignored, "
                f"'schedules.{command}' is already declared"
            )
            continue
        notices.append(
            f"profile '{name}': '{command}.schedule' is deprecated, "
            f"declare it as 'schedules.{command}' instead"
        )
        sections[command] = legacy
    declared = _declared_schedules(
        name,
        sections,
        supported=SCHEDULABLE_COMMANDS,
        kind=Profile.kind,
        defaults=defaults,
        config_file=config_file,
        issues=issues,
    )
    return Profile(
        name=name,
        section=section,
        declared=declared,
        deprecation_notices=tuple(notices),
    )


def build_group(
    name: str,
    section: GroupSection,
    *,
    defaults: ScheduleDefaults,
    config_file: str,
    issues: list[str],
) -> Group:
    """Build a group with its own schedules.

    Args:
        name: Group name.
        section: Validated group section.
        defaults: Global schedule defaults.
        config_file: Declaring configuration file.
        issues: Configuration issue accumulator.

    Returns:
        Loaded group.
    """
    declared = _declared_schedules(
        name,
        section.schedules,
        supported=SCHEDULABLE_COMMANDS,
        kind=Group.kind,
        defaults=defaults,
        config_file=config_file,
        issues=issues,
    )
    return Group(name=name, section=section, declared=declared)


def _declared_schedules(  # noqa: PLR0913
    owner: str,
    sections: Mapping[str, ScheduleSection],
    *,
    supported: tuple[str, ...],
    kind: str,
    defaults: ScheduleDefaults,
    config_file: str,
    issues: list[str],
) -> dict[str, Schedule]:
    """Build schedules for supported commands, reporting the others.

    Args:
        owner: Profile or group name.
        sections: Declared sections keyed by command.
        supported: Schedulable commands of the owner.
        kind: Owner kind for issue messages.
        defaults: Global schedule defaults.
        config_file: Declaring configuration file.
        issues: Configuration issue accumulator.

    Returns:
        Declared schedules keyed by command.
    """
    schedules: dict[str, Schedule] = {}
    for command, schedule_section in sections.items():
        if command not in supported:
            issues.append(
                f"{kind} '{owner}': command '{command}' cannot be scheduled, "
                "schedule ignored"
            )
            continue
        schedules[command] = Schedule.from_section(
            ScheduleOrigin(owner, command),
            schedule_section,
            defaults=defaults,
            config_file=config_file,
        )
    return schedules
