"""Keeper configuration loading."""

from keeper.config.backup_config import BackupConfig, load_backup_config
from keeper.config.errors import ConfigError, ConfigErrorCode
from keeper.config.global_config import (
    GlobalSection,
    SchedulerBackend,
    SchedulerSettings,
)
from keeper.config.models import (
    SCHEDULABLE_COMMANDS,
    LockMode,
    ScheduleDefaults,
    ScheduleSection,
)
from keeper.config.profile import Group, Profile, Schedulable
from keeper.config.schedule import Schedule, ScheduleOrigin, new_default_schedule

__all__ = [
    "SCHEDULABLE_COMMANDS",
    "BackupConfig",
    "ConfigError",
    "ConfigErrorCode",
    "GlobalSection",
    "Group",
    "LockMode",
    "Profile",
    "Schedulable",
    "Schedule",
    "ScheduleDefaults",
    "ScheduleOrigin",
    "ScheduleSection",
    "SchedulerBackend",
    "SchedulerSettings",
    "load_backup_config",
    "new_default_schedule",
]
