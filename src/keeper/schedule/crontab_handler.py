"""User crontab handler."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from rich.console import Console

from keeper.config import Schedule
from keeper.config.crontab import crontab_trigger
from keeper.schedule.errors import ScheduleError, ScheduleErrorCode
from keeper.schedule.handler import SchedulerConfig
from keeper.schedule.report import JobStatusRow, render_job_table

_BEGIN = "# keeper:begin "
_END = "# keeper:end "
_CONFIG_MARK = " config="
_LOGGER = logging.getLogger(__name__)

CommandRunner = Callable[..., subprocess.CompletedProcess[str]]


@dataclass(frozen=True)
class CrontabBlock:
    """Marked crontab lines belonging to one schedule."""

    schedule_name: str
    config_file: str
    entries: tuple[str, ...]

    @property
    def profile_name(self) -> str:
        """Owning profile or group name."""
        return self.schedule_name.partition("@")[2]

    def render(self) -> list[str]:
        """Return the crontab lines of this block.

        Returns:
            Begin marker, entries and end marker.
        """
        return [
            f"{_BEGIN}{self.schedule_name}{_CONFIG_MARK}{self.config_file}",
            *self.entries,
            f"{_END}{self.schedule_name}",
        ]


def split_crontab(lines: Sequence[str]) -> tuple[list[str], dict[str, CrontabBlock]]:
    """Separate keeper blocks from the rest of a crontab.

    Args:
        lines: Crontab lines.

    Returns:
        Foreign lines in order, and keeper blocks keyed by schedule name.
    """
    others: list[str] = []
    blocks: dict[str, CrontabBlock] = {}
    current: tuple[str, str] | None = None
    entries: list[str] = []
    for line in lines:
        if current is None:
            if line.startswith(_BEGIN):
                name, _, config_file = line.removeprefix(_BEGIN).partition(_CONFIG_MARK)
                current = (name.strip(), config_file.strip())
                entries = []
            else:
                others.append(line)
            continue
        if line.startswith(_END):
            blocks[current[0]] = CrontabBlock(current[0], current[1], tuple(entries))
            current = None
            continue
        entries.append(line)
    if current is not None:
        # unterminated block: keep what was read
        blocks[current[0]] = CrontabBlock(current[0], current[1], tuple(entries))
    return others, blocks


class CrontabHandler:
    """Install keeper schedules in the current user's crontab."""

    def __init__(
        self,
        config: SchedulerConfig,
        *,
        console: Console | None = None,
        runner: CommandRunner = subprocess.run,
    ) -> None:
        """Store handler configuration.

        Args:
            config: Scheduler backend configuration.
            console: Rich console used by status reports.
            runner: ``subprocess.run`` compatible callable.
        """
        self._config = config
        self._console = console or Console()
        self._runner = runner

    def create_jobs(self, jobs: Sequence[Schedule]) -> None:
        """Install or replace crontab blocks.

        Args:
            jobs: Declared schedules.

        Raises:
            ScheduleError: If a job is removal-only or crontab fails.
        """
        for job in jobs:
            if job.removal_only:
                raise ScheduleError(
                    ScheduleErrorCode.INVALID_JOB,
                    f"schedule {job.name} is not declared and cannot be created",
                    data={"schedule": job.name},
                )
        others, blocks = split_crontab(self._read())
        changed = False
        for job in jobs:
            block = self._block_for(job)
            if blocks.get(job.name) == block and not job.has_flag("reload"):
                _LOGGER.info("scheduled job %s is unchanged", job.name)
                continue
            if job.has_flag("no-start"):
                _LOGGER.debug("no-start has no effect on crontab job %s", job.name)
            blocks[job.name] = block
            changed = True
            _LOGGER.info("scheduled job %s created", job.name)
        if changed:
            self._write(others, blocks)

    def remove_jobs(self, jobs: Sequence[Schedule]) -> None:
        """Remove crontab blocks of the given jobs.

        Args:
            jobs: Declared schedules and removal-only placeholders.
        """
        others, blocks = split_crontab(self._read())
        removed = False
        for job in jobs:
            if blocks.pop(job.name, None) is not None:
                removed = True
                _LOGGER.info("scheduled job %s removed", job.name)
            elif not job.removal_only:
                _LOGGER.warning("scheduled job %s is not installed", job.name)
        if removed:
            self._write(others, blocks)

    def report_status(self, profile_name: str, jobs: Sequence[Schedule]) -> None:
        """Display crontab status of the given jobs.

        Args:
            profile_name: Profile or group name.
            jobs: Declared schedules.
        """
        _, blocks = split_crontab(self._read())
        rows = [
            JobStatusRow(
                job.name,
                "installed" if job.name in blocks else "not installed",
                _next_run(job.at) if job.name in blocks else None,
                job.at,
            )
            for job in jobs
        ]
        render_job_table(self._console, title=f"Schedules of {profile_name}", rows=rows)

    def remove_recorded(self, config_file: str, profile_name: str) -> None:
        """Remove every keeper block installed from one configuration file.

        Args:
            config_file: Configuration file that installed the jobs.
            profile_name: Profile or group filter, empty for all.
        """
        others, blocks = split_crontab(self._read())
        matching = [
            name
            for name, block in blocks.items()
            if _matches(block, config_file, profile_name)
        ]
        if not matching:
            _LOGGER.info("no scheduled jobs found")
            return
        for name in matching:
            del blocks[name]
            _LOGGER.info("scheduled job %s removed", name)
        self._write(others, blocks)

    def report_recorded(self, config_file: str, profile_name: str) -> None:
        """Display keeper blocks installed from one configuration file.

        Args:
            config_file: Configuration file that installed the jobs.
            profile_name: Profile or group filter, empty for all.
        """
        _, blocks = split_crontab(self._read())
        rows = [
            JobStatusRow(name, "installed", _next_run(_expressions(block)), _expressions(block))
            for name, block in blocks.items()
            if _matches(block, config_file, profile_name)
        ]
        if not rows:
            _LOGGER.info("no scheduled jobs found")
            return
        render_job_table(self._console, title=f"Scheduled jobs of {config_file}", rows=rows)

    def _block_for(self, job: Schedule) -> CrontabBlock:
        """Build crontab block for one job.

        Args:
            job: Declared schedule.

        Returns:
            Crontab block.
        """
        command = shlex.join(self._config.command_line(job.config_file, job.name))
        # cron treats an unescaped % as a newline
        command = command.replace("%", "\\%")
        return CrontabBlock(
            job.name,
            job.config_file,
            tuple(f"{expression} {command}" for expression in job.at),
        )

    def _read(self) -> list[str]:
        """Read the current crontab.

        Returns:
            Crontab lines, empty when the user has no crontab.

        Raises:
            ScheduleError: If crontab cannot be read.
        """
        result = self._run([self._config.crontab_binary, "-l"])
        if result.returncode != 0:
            if "no crontab" in (result.stderr or "").lower():
                return []
            raise _failure("read", result)
        return result.stdout.splitlines()

    def _write(self, others: list[str], blocks: dict[str, CrontabBlock]) -> None:
        """Install crontab made of foreign lines followed by keeper blocks.

        Args:
            others: Lines not owned by keeper.
            blocks: Keeper blocks.

        Raises:
            ScheduleError: If crontab cannot be installed.
        """
        lines = list(others)
        for block in blocks.values():
            lines.extend(block.render())
        content = "\n".join(lines) + "\n" if lines else ""
        result = self._run([self._config.crontab_binary, "-"], content=content)
        if result.returncode != 0:
            raise _failure("install", result)

    def _run(
        self, argv: list[str], *, content: str | None = None
    ) -> subprocess.CompletedProcess[str]:
        """Run crontab binary.

        Args:
            argv: Argument vector.
            content: Optional standard input.

        Returns:
            Completed process.

        Raises:
            ScheduleError: If the binary cannot be executed.
        """
        try:
            return self._runner(
                argv, input=content, capture_output=True, text=True, check=False
            )
        except PermissionError as exc:
            raise ScheduleError(
                ScheduleErrorCode.PERMISSION_DENIED,
                f"cannot execute '{argv[0]}': {exc}",
            ) from exc
        except OSError as exc:
            raise ScheduleError(
                ScheduleErrorCode.HANDLER_FAILED,
                f"cannot execute '{argv[0]}': {exc}",
            ) from exc


def _failure(action: str, result: subprocess.CompletedProcess[str]) -> ScheduleError:
    """Map a failed crontab call to a schedule error.

    Args:
        action: ``read`` or ``install``.
        result: Completed process.

    Returns:
        Schedule error to raise.
    """
    stderr = (result.stderr or "").strip()
    lowered = stderr.lower()
    code = (
        ScheduleErrorCode.PERMISSION_DENIED
        if "permission denied" in lowered or "not allowed" in lowered
        else ScheduleErrorCode.HANDLER_FAILED
    )
    return ScheduleError(
        code,
        f"cannot {action} crontab: {stderr or f'exit code {result.returncode}'}",
        data={"returncode": result.returncode},
    )


def _matches(block: CrontabBlock, config_file: str, profile_name: str) -> bool:
    if block.config_file != config_file:
        return False
    return not profile_name or block.profile_name == profile_name


def _expressions(block: CrontabBlock) -> tuple[str, ...]:
    return tuple(" ".join(entry.split()[:5]) for entry in block.entries)


def _next_run(expressions: Sequence[str]) -> datetime | None:
    """Compute the next fire time across crontab expressions.

    Args:
        expressions: Crontab expressions.

    Returns:
        Earliest next fire time, ``None`` when nothing is scheduled.
    """
    now = datetime.now().astimezone()
    times = []
    for expression in expressions:
        try:
            fire_time = crontab_trigger(expression).get_next_fire_time(None, now)
        except ValueError:
            continue
        if fire_time is not None:
            times.append(fire_time)
    return min(times, default=None)
