"""Profile, group and schedule section models loaded from the config file."""

from __future__ import annotations

from datetime import timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from keeper.config.crontab import crontab_trigger

SCHEDULABLE_COMMANDS: tuple[str, ...] = ("backup", "check", "copy", "forget", "prune")


class LockMode(StrEnum):
    """How a scheduled run deals with the repository lock."""

    DEFAULT = "default"
    FAIL = "fail"
    IGNORE = "ignore"


def _as_tuple(value: object) -> object:
    """Accept a single string wherever a list of strings is expected.

    Args:
        value: Raw field payload.

    Returns:
        One-element tuple for strings, otherwise the payload unchanged.
    """
    if isinstance(value, str):
        return (value,)
    return value


def _validate_crontab(expressions: tuple[str, ...]) -> tuple[str, ...]:
    """Reject crontab expressions APScheduler cannot parse.

    Args:
        expressions: Crontab expressions.

    Returns:
        Stripped expressions.

    Raises:
        ValueError: If one expression is invalid.
    """
    cleaned = tuple(item.strip() for item in expressions)
    for expression in cleaned:
        try:
            crontab_trigger(expression)
        except ValueError as exc:
            raise ValueError(f"invalid crontab expression '{expression}'.") from exc
    return cleaned


class ScheduleDefaults(BaseModel):
    """Global defaults applied to every schedule that does not override them."""

    model_config = ConfigDict(extra="forbid")

    log: str = ""
    command_output: str = ""
    ignore_on_battery: bool | None = None
    ignore_on_battery_less_than: int = Field(default=0, ge=0, le=100)
    lock_mode: LockMode = LockMode.DEFAULT
    lock_wait: timedelta | None = None


class ScheduleSection(BaseModel):
    """Declared schedule for one command of a profile or group."""

    model_config = ConfigDict(extra="forbid")

    at: tuple[str, ...] = Field(min_length=1)
    log: str | None = None
    command_output: str | None = None
    ignore_on_battery: bool | None = None
    ignore_on_battery_less_than: int | None = Field(default=None, ge=0, le=100)
    lock_mode: LockMode | None = None
    lock_wait: timedelta | None = None

    @field_validator("at", mode="before")
    @classmethod
    def _coerce_at(cls, value: object) -> object:
        """Allow a single expression instead of a list.

        Args:
            value: Raw field payload.

        Returns:
            Normalized payload.
        """
        return _as_tuple(value)

    @field_validator("at")
    @classmethod
    def _validate_at(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Validate crontab expressions.

        Args:
            value: Declared expressions.

        Returns:
            Validated expressions.
        """
        return _validate_crontab(value)


class CommandSection(BaseModel):
    """Restic command options of a profile.

    The ``schedule*`` keys are the deprecated way of declaring a schedule and
    are converted into a :class:`ScheduleSection` when the profile is loaded.
    """

    model_config = ConfigDict(extra="forbid")

    args: tuple[str, ...] = ()
    schedule: tuple[str, ...] | None = None
    schedule_log: str | None = None
    schedule_lock_mode: LockMode | None = None
    schedule_lock_wait: timedelta | None = None

    @field_validator("args", "schedule", mode="before")
    @classmethod
    def _coerce_lists(cls, value: object) -> object:
        """Allow single strings for list fields.

        Args:
            value: Raw field payload.

        Returns:
            Normalized payload.
        """
        return _as_tuple(value)

    def legacy_schedule(self) -> ScheduleSection | None:
        """Convert deprecated schedule keys into a schedule section.

        Returns:
            Schedule section when ``schedule`` is declared, otherwise ``None``.
        """
        if not self.schedule:
            return None
        return ScheduleSection(
            at=self.schedule,
            log=self.schedule_log,
            lock_mode=self.schedule_lock_mode,
            lock_wait=self.schedule_lock_wait,
        )


class ProfileSection(BaseModel):
    """Validated profile section."""

    model_config = ConfigDict(extra="forbid")

    description: str = ""
    repository: str = ""
    password_file: str = ""
    env: dict[str, str] = {}
    commands: dict[str, CommandSection] = {}
    schedules: dict[str, ScheduleSection] = {}

    @model_validator(mode="before")
    @classmethod
    def _collect_command_sections(cls, data: object) -> object:
        """Move top-level command sections (``backup:``...) under ``commands``.

        Args:
            data: Raw profile payload.

        Returns:
            Payload with command sections grouped.
        """
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        commands = dict(payload.pop("commands", None) or {})
        for name in SCHEDULABLE_COMMANDS:
            if name in payload:
                commands[name] = payload.pop(name) or {}
        payload["commands"] = commands
        return payload


class GroupSection(BaseModel):
    """Validated group section."""

    model_config = ConfigDict(extra="forbid")

    description: str = ""
    profiles: tuple[str, ...] = ()
    continue_on_error: bool = False
    schedules: dict[str, ScheduleSection] = {}

    @model_validator(mode="before")
    @classmethod
    def _accept_profile_list(cls, data: object) -> object:
        """Accept the short form where a group is only a list of profiles.

        Args:
            data: Raw group payload.

        Returns:
            Mapping payload.
        """
        if isinstance(data, list | tuple):
            return {"profiles": tuple(data)}
        return data
