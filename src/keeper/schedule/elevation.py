"""Retry of permission failures with elevated privileges."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from keeper.schedule.errors import ScheduleError, ScheduleErrorCode

ELEVATED_FLAG = "--elevated"
_LOGGER = logging.getLogger(__name__)


class ElevationPolicy(BaseModel):
    """Command-line state deciding whether elevation may be attempted."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    elevated: bool = False
    launcher: tuple[str, ...] = ()
    arguments: tuple[str, ...] = ()

    def elevated_command_line(self) -> list[str]:
        """Return the command line relaunched under elevation.

        Returns:
            Launcher, the elevated flag, then the original arguments.
        """
        return [*self.launcher, ELEVATED_FLAG, *self.arguments]


class Elevator(Protocol):
    """Relaunches a command with elevated privileges."""

    def relaunch(self, command_line: Sequence[str]) -> int:
        """Run the command elevated and wait for it.

        Args:
            command_line: Command to relaunch, already marked as elevated.

        Returns:
            Exit code of the elevated command.
        """


class SudoElevator:
    """Elevator relaunching through ``sudo``."""

    def __init__(self, sudo_binary: str = "sudo") -> None:
        """Store sudo binary.

        Args:
            sudo_binary: Name or path of sudo.
        """
        self._sudo_binary = sudo_binary

    def relaunch(self, command_line: Sequence[str]) -> int:
        """Run ``sudo <command>`` and wait for it.

        Args:
            command_line: Command to relaunch.

        Returns:
            Exit code of the elevated command.
        """
        try:
            return subprocess.run(  # noqa: S603
                [self._sudo_binary, *command_line], check=False
            ).returncode
        except OSError as exc:
            raise ScheduleError(
                ScheduleErrorCode.PERMISSION_DENIED,
                f"cannot run '{self._sudo_binary}': {exc}",
            ) from exc


def retry_elevated(
    error: ScheduleError,
    policy: ElevationPolicy,
    *,
    elevator: Elevator | None = None,
) -> None:
    """Relaunch the command once when ``error`` is a permission failure.

    Args:
        error: Failure of the privileged operation.
        policy: Elevation policy of the running command.
        elevator: Elevator used for the relaunch, ``sudo`` by default.

    Raises:
        ScheduleError: ``error`` itself when no elevation applies, or a
            ``PERMISSION_DENIED`` error when the elevated command fails.
    """
    if (
        error.code != ScheduleErrorCode.PERMISSION_DENIED
        or not policy.enabled
        or policy.elevated
        or not policy.launcher
    ):
        raise error
    _LOGGER.warning("%s, retrying with elevated privileges", error)
    returncode = (elevator or SudoElevator()).relaunch(policy.elevated_command_line())
    if returncode != 0:
        raise ScheduleError(
            ScheduleErrorCode.PERMISSION_DENIED,
            f"elevated command failed with exit code {returncode}: {error}",
            data={**error.data, "returncode": returncode},
        ) from error


def run_with_elevation(
    operation: Callable[[], None],
    policy: ElevationPolicy,
    *,
    elevator: Elevator | None = None,
) -> None:
    """Run a privileged operation, retrying once elevated on permission failure.

    Args:
        operation: Handler call to run.
        policy: Elevation policy of the running command.
        elevator: Elevator used for the relaunch.
    """
    try:
        operation()
    except ScheduleError as exc:
        retry_elevated(exc, policy, elevator=elevator)
