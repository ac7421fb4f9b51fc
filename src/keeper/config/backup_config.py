"""File-backed configuration provider for profiles, groups and schedules."""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from keeper.config.errors import ConfigError, ConfigErrorCode
from keeper.config.global_config import GlobalSection
from keeper.config.models import GroupSection, ProfileSection
from keeper.config.profile import Group, Profile, build_group, build_profile


class BackupConfig:
    """Lazy view over one configuration file.

    Sections are validated on access so that a broken profile only fails the
    operations that actually need it.
    """

    def __init__(self, *, config_file: Path, payload: Mapping[str, object]) -> None:
        """Store decoded payload.

        Args:
            config_file: Path the payload was read from.
            payload: Decoded root mapping.

        Raises:
            ConfigError: If top-level sections have the wrong shape.
        """
        self._config_file = config_file.expanduser().resolve()
        self._global = _mapping_section(payload, "global")
        self._profiles = _mapping_section(payload, "profiles")
        self._groups = _mapping_section(payload, "groups")
        self._issues: list[str] = []
        self._global_section: GlobalSection | None = None

    @property
    def config_file(self) -> str:
        """Absolute path of the configuration file."""
        return str(self._config_file)

    def get_global_section(self) -> GlobalSection:
        """Validate and return the global section.

        Returns:
            Global section model.

        Raises:
            ConfigError: If the section is invalid.
        """
        if self._global_section is None:
            self._global_section = _validate(
                GlobalSection, self._global, label="global section"
            )
        return self._global_section

    def get_profile_names(self) -> list[str]:
        """Return profile names in declaration order.

        Returns:
            Profile names.
        """
        return list(self._profiles)

    def get_group_names(self) -> list[str]:
        """Return group names in declaration order.

        Returns:
            Group names.
        """
        return list(self._groups)

    def has_profile(self, name: str) -> bool:
        """Return whether a profile is declared.

        Args:
            name: Profile name.

        Returns:
            ``True`` when declared.
        """
        return name in self._profiles

    def has_profile_group(self, name: str) -> bool:
        """Return whether a group is declared.

        Args:
            name: Group name.

        Returns:
            ``True`` when declared.
        """
        return name in self._groups

    def get_profile(self, name: str) -> Profile:
        """Load one profile with its declared schedules.

        Args:
            name: Profile name.

        Returns:
            Loaded profile. Each call builds new schedule objects.

        Raises:
            ConfigError: If the profile is missing or invalid.
        """
        if name not in self._profiles:
            raise ConfigError(
                ConfigErrorCode.NOT_FOUND,
                f"profile '{name}' not found",
                data={"profile": name},
            )
        section = _validate(
            ProfileSection, self._profiles[name] or {}, label=f"profile '{name}'"
        )
        return build_profile(
            name,
            section,
            defaults=self.get_global_section().schedule_defaults,
            config_file=self.config_file,
            issues=self._issues,
        )

    def get_profile_group(self, name: str) -> Group:
        """Load one group with its declared schedules.

        Args:
            name: Group name.

        Returns:
            Loaded group. Each call builds new schedule objects.

        Raises:
            ConfigError: If the group is missing or invalid.
        """
        if name not in self._groups:
            raise ConfigError(
                ConfigErrorCode.NOT_FOUND,
                f"group '{name}' not found",
                data={"group": name},
            )
        section = _validate(
            GroupSection, self._groups[name] or {}, label=f"group '{name}'"
        )
        return build_group(
            name,
            section,
            defaults=self.get_global_section().schedule_defaults,
            config_file=self.config_file,
            issues=self._issues,
        )

    def drain_issues(self) -> tuple[str, ...]:
        """Return and clear configuration issues collected while loading.

        Returns:
            Issue messages in the order they were found.
        """
        issues = tuple(dict.fromkeys(self._issues))
        self._issues.clear()
        return issues


def load_backup_config(path: Path) -> BackupConfig:
    """Read a YAML or JSON configuration file.

    Args:
        path: Configuration file path.

    Returns:
        Configuration provider.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed.
    """
    if not path.exists():
        raise ConfigError(
            ConfigErrorCode.NOT_FOUND,
            f"configuration file '{path}' not found",
            data={"path": str(path)},
        )
    return BackupConfig(config_file=path, payload=_decode_config_payload(path))


def _decode_config_payload(path: Path) -> dict[str, object]:
    """Decode configuration payload from JSON or YAML.

    Args:
        path: Config file path.

    Returns:
        Parsed mapping payload.

    Raises:
        ConfigError: If decode fails or payload is not an object.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            ConfigErrorCode.INVALID,
            f"cannot read configuration file '{path}': {exc}",
            data={"path": str(path)},
        ) from exc
    if path.suffix.lower() == ".json":
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(
                ConfigErrorCode.INVALID,
                f"invalid configuration JSON: {exc}",
                data={"path": str(path)},
            ) from exc
    else:
        try:
            payload = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigError(
                ConfigErrorCode.INVALID,
                f"invalid configuration YAML: {exc}",
                data={"path": str(path)},
            ) from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigError(
            ConfigErrorCode.INVALID,
            "invalid configuration payload: root must be an object",
            data={"path": str(path)},
        )
    return payload


def _mapping_section(payload: Mapping[str, object], key: str) -> dict[str, object]:
    """Extract one top-level mapping section.

    Args:
        payload: Root payload.
        key: Section key.

    Returns:
        Section mapping, empty when absent.

    Raises:
        ConfigError: If the section is not a mapping.
    """
    section = payload.get(key)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(
            ConfigErrorCode.INVALID,
            f"invalid configuration payload: '{key}' must be an object",
            data={"section": key},
        )
    return {str(name): value for name, value in section.items()}


def _validate[M: BaseModel](model: type[M], payload: object, *, label: str) -> M:
    """Validate one section payload.

    Args:
        model: Target model class.
        payload: Raw payload.
        label: Section label for error messages.

    Returns:
        Validated model.

    Raises:
        ConfigError: If validation fails.
    """
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(
            ConfigErrorCode.INVALID,
            f"invalid {label}: {exc}",
            data={"section": label, "validation_errors": exc.errors()},
        ) from exc
