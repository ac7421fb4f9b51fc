"""Selection of the profiles and groups a schedule command applies to."""

from __future__ import annotations

from typing import Protocol


class NameSource(Protocol):
    """Configuration capability needed for selection."""

    def get_profile_names(self) -> list[str]:
        """Return profile names in declaration order."""

    def get_group_names(self) -> list[str]:
        """Return group names in declaration order."""


def select_profiles_and_groups(
    config: NameSource, profile_name: str, *, select_all: bool
) -> list[str]:
    """Resolve the names a command operates on.

    With ``select_all`` every profile then every group is returned, whatever
    ``profile_name`` is; the list is only empty when the configuration declares
    neither. Otherwise the requested name is returned as-is.

    Args:
        config: Configuration providing profile and group names.
        profile_name: Name requested on the command line.
        select_all: Whether ``--all`` was given.

    Returns:
        Ordered profile and group names.
    """
    if select_all:
        return [*config.get_profile_names(), *config.get_group_names()]
    return [profile_name]
