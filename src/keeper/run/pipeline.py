"""Execution of restic for a fired schedule."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO

import psutil

from keeper.config import BackupConfig, ConfigError, Profile
from keeper.run.errors import RunError, RunErrorCode
from keeper.schedule.rehydrate import ExecutionContext

_LOGGER = logging.getLogger(__name__)

CommandRunner = Callable[..., subprocess.CompletedProcess[bytes]]


@dataclass(frozen=True)
class BatteryState:
    """Snapshot of the host battery."""

    percent: float
    plugged: bool


BatteryProbe = Callable[[], BatteryState | None]


@dataclass(frozen=True)
class RunOutcome:
    """Result of running one command for one profile."""

    profile_name: str
    command: str
    returncode: int
    skipped: bool = False
    reason: str = ""


def read_battery() -> BatteryState | None:
    """Read battery state through psutil.

    Returns:
        Battery state, ``None`` when the host has no battery or the platform
        cannot report one.
    """
    sensors_battery = getattr(psutil, "sensors_battery", None)
    if sensors_battery is None:
        return None
    battery = sensors_battery()
    if battery is None:
        return None
    return BatteryState(percent=float(battery.percent), plugged=bool(battery.power_plugged))


def battery_blocks_run(threshold: int, probe: BatteryProbe) -> BatteryState | None:
    """Return the battery state when it prevents a run.

    Args:
        threshold: Minimum charge in percent, 0 disables the check.
        probe: Battery probe.

    Returns:
        Battery state when running on battery below ``threshold``.
    """
    if threshold <= 0:
        return None
    state = probe()
    if state is None or state.plugged:
        return None
    return state if state.percent < threshold else None


def build_restic_argv(
    restic_binary: str, profile: Profile, context: ExecutionContext
) -> list[str]:
    """Build the restic argument vector for one profile.

    Args:
        restic_binary: Restic executable.
        profile: Profile being run.
        context: Execution context of the fired schedule.

    Returns:
        Argument vector.
    """
    argv = [restic_binary, context.command]
    if context.no_lock:
        argv.append("--no-lock")
    elif context.lock_wait is not None:
        argv.extend(["--retry-lock", f"{int(context.lock_wait.total_seconds())}s"])
    argv.extend(profile.command_args(context.command))
    argv.extend(context.arguments)
    return argv


def build_restic_env(
    profile: Profile, *, config_dir: Path, base: dict[str, str] | None = None
) -> dict[str, str]:
    """Build the restic environment for one profile.

    Args:
        profile: Profile being run.
        config_dir: Directory relative password files are resolved against.
        base: Inherited environment, the process environment by default.

    Returns:
        Environment mapping.
    """
    env = dict(os.environ if base is None else base)
    env.update(profile.section.env)
    if profile.section.repository:
        env["RESTIC_REPOSITORY"] = profile.section.repository
    if profile.section.password_file:
        password_file = Path(profile.section.password_file).expanduser()
        if not password_file.is_absolute():
            password_file = config_dir / password_file
        env["RESTIC_PASSWORD_FILE"] = str(password_file)
    return env


class ResticRunner:
    """Run restic for the profile or group of a fired schedule."""

    def __init__(
        self,
        config: BackupConfig,
        *,
        runner: CommandRunner = subprocess.run,
        battery_probe: BatteryProbe = read_battery,
    ) -> None:
        """Store run dependencies.

        Args:
            config: Configuration provider.
            runner: ``subprocess.run`` compatible callable.
            battery_probe: Battery state probe.
        """
        self._config = config
        self._runner = runner
        self._battery_probe = battery_probe

    def run(self, context: ExecutionContext) -> list[RunOutcome]:
        """Run the scheduled command.

        Args:
            context: Execution context of the fired schedule.

        Returns:
            One outcome per profile run, or one skipped outcome.

        Raises:
            RunError: If the target cannot be loaded or a profile run fails
                outside a group that continues on error.
        """
        battery = battery_blocks_run(context.stop_on_battery, self._battery_probe)
        if battery is not None:
            reason = (
                f"running on battery at {battery.percent:.0f}%, "
                f"below {context.stop_on_battery}%"
            )
            _LOGGER.warning("skipping %s: %s", context.schedule_name, reason)
            return [
                RunOutcome(
                    context.profile_name, context.command, 0, skipped=True, reason=reason
                )
            ]

        restic_binary = self._restic_binary()
        profiles, continue_on_error = self._load_targets(context.profile_name)
        outcomes: list[RunOutcome] = []
        for profile in profiles:
            returncode = self._run_profile(restic_binary, profile, context)
            outcomes.append(RunOutcome(profile.name, context.command, returncode))
            if returncode == 0:
                continue
            if continue_on_error:
                _LOGGER.error(
                    "%s on profile %s failed with exit code %d",
                    context.command,
                    profile.name,
                    returncode,
                )
                continue
            raise RunError(
                RunErrorCode.COMMAND_FAILED,
                f"{context.command} on profile '{profile.name}' failed "
                f"with exit code {returncode}",
                data={"profile": profile.name, "returncode": returncode},
            )
        return outcomes

    def _restic_binary(self) -> str:
        try:
            return self._config.get_global_section().restic_binary
        except ConfigError as exc:
            raise RunError(
                RunErrorCode.TARGET_UNAVAILABLE,
                f"cannot load global section: {exc}",
            ) from exc

    def _load_targets(self, name: str) -> tuple[list[Profile], bool]:
        """Load the profiles a run applies to.

        Args:
            name: Profile or group name.

        Returns:
            Profiles in order, and whether failures are tolerated.

        Raises:
            RunError: If the profile, group or a member cannot be loaded.
        """
        try:
            if self._config.has_profile(name):
                return [self._config.get_profile(name)], False
            if self._config.has_profile_group(name):
                group = self._config.get_profile_group(name)
                return (
                    [self._config.get_profile(member) for member in group.profiles],
                    group.section.continue_on_error,
                )
        except ConfigError as exc:
            raise RunError(
                RunErrorCode.TARGET_UNAVAILABLE,
                f"cannot load '{name}': {exc}",
                data={"name": name},
            ) from exc
        raise RunError(
            RunErrorCode.TARGET_UNAVAILABLE,
            f"profile or group '{name}' not found",
            data={"name": name},
        )

    def _run_profile(
        self, restic_binary: str, profile: Profile, context: ExecutionContext
    ) -> int:
        """Run restic once for one profile.

        Args:
            restic_binary: Restic executable.
            profile: Profile being run.
            context: Execution context of the fired schedule.

        Returns:
            Restic exit code.

        Raises:
            RunError: If restic cannot be executed.
        """
        argv = build_restic_argv(restic_binary, profile, context)
        env = build_restic_env(
            profile, config_dir=Path(self._config.config_file).parent
        )
        _LOGGER.info("running %s on profile %s", context.command, profile.name)
        _LOGGER.debug("command line: %s", argv)
        with _command_output(context) as output:
            try:
                result = self._runner(
                    argv,
                    env=env,
                    stdout=output,
                    stderr=subprocess.STDOUT if output is not None else None,
                    check=False,
                )
            except OSError as exc:
                raise RunError(
                    RunErrorCode.BINARY_UNAVAILABLE,
                    f"cannot execute '{restic_binary}': {exc}",
                    data={"binary": restic_binary},
                ) from exc
        return result.returncode


@contextmanager
def _command_output(context: ExecutionContext) -> Iterator[IO[bytes] | None]:
    """Open the log target when restic output is redirected to it.

    Args:
        context: Execution context of the fired schedule.

    Yields:
        Writable log file, or ``None`` to inherit the console.
    """
    if context.command_output != "log" or not context.log_target:
        yield None
        return
    path = Path(context.log_target).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("ab") as handle:
        yield handle


def summarize(outcomes: Sequence[RunOutcome]) -> int:
    """Collapse run outcomes into a process exit code.

    Args:
        outcomes: Run outcomes.

    Returns:
        ``0`` when every run succeeded or was skipped, otherwise ``1``.
    """
    return 0 if all(item.returncode == 0 for item in outcomes) else 1
