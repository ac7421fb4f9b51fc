"""APScheduler handler persisting jobs in a SQLite job store."""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import subprocess
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from keeper.config import Schedule
from keeper.config.crontab import crontab_trigger
from keeper.schedule.errors import ScheduleError, ScheduleErrorCode
from keeper.schedule.handler import SchedulerConfig
from keeper.schedule.report import JobStatusRow, render_job_table
from keeper.schedule.state import RecordedJob, RecordedJobStore

_APS_JOB_PREFIX = "keeper:"
_LOGGER = logging.getLogger(__name__)


class APSchedulerHandler:
    """Install keeper schedules as APScheduler cron jobs.

    Each call opens the job store with a paused scheduler, so jobs are written
    without ever running in the calling process. :meth:`serve` is the long
    running loop that actually fires them.
    """

    def __init__(self, config: SchedulerConfig, *, console: Console | None = None) -> None:
        """Store handler configuration.

        Args:
            config: Scheduler backend configuration.
            console: Rich console used by status reports.
        """
        self._config = config
        self._console = console or Console()

    def create_jobs(self, jobs: Sequence[Schedule]) -> None:
        """Install or update jobs, skipping unchanged ones unless reloaded.

        Args:
            jobs: Declared schedules.

        Raises:
            ScheduleError: If a job is removal-only or the store fails.
        """
        _reject_removal_only(jobs)
        with self._session() as (scheduler, store):
            for job in jobs:
                self._install(scheduler, store, job)

    def remove_jobs(self, jobs: Sequence[Schedule]) -> None:
        """Uninstall jobs, ignoring those that are not installed.

        Args:
            jobs: Declared schedules and removal-only placeholders.
        """
        with self._session() as (scheduler, store):
            for job in jobs:
                removed = _uninstall(scheduler, store, job.name)
                if removed:
                    _LOGGER.info("scheduled job %s removed", job.name)
                elif not job.removal_only:
                    _LOGGER.warning("scheduled job %s is not installed", job.name)

    def report_status(self, profile_name: str, jobs: Sequence[Schedule]) -> None:
        """Display status of the given jobs.

        Args:
            profile_name: Profile or group name.
            jobs: Declared schedules.
        """
        with self._session() as (scheduler, _):
            rows = [_status_row(scheduler, job.name, job.at) for job in jobs]
        render_job_table(self._console, title=f"Schedules of {profile_name}", rows=rows)

    def remove_recorded(self, config_file: str, profile_name: str) -> None:
        """Uninstall every recorded job of a configuration file.

        Args:
            config_file: Configuration file that installed the jobs.
            profile_name: Profile or group filter, empty for all.
        """
        with self._session() as (scheduler, store):
            records = store.list_recorded(
                config_file=config_file, profile_name=profile_name
            )
            if not records:
                _LOGGER.info("no scheduled jobs found")
                return
            for record in records:
                _uninstall(scheduler, store, record.schedule_name)
                _LOGGER.info("scheduled job %s removed", record.schedule_name)

    def report_recorded(self, config_file: str, profile_name: str) -> None:
        """Display every recorded job of a configuration file.

        Args:
            config_file: Configuration file that installed the jobs.
            profile_name: Profile or group filter, empty for all.
        """
        with self._session() as (scheduler, store):
            records = store.list_recorded(
                config_file=config_file, profile_name=profile_name
            )
            rows = [_recorded_row(scheduler, record) for record in records]
        if not rows:
            _LOGGER.info("no scheduled jobs found")
            return
        render_job_table(self._console, title=f"Scheduled jobs of {config_file}", rows=rows)

    def serve(self, stop: threading.Event | None = None) -> None:
        """Run the scheduler and fire installed jobs until stopped.

        Args:
            stop: Event ending the loop; runs until interrupted when omitted.
        """
        stop = stop or threading.Event()
        scheduler = self._build_scheduler()
        scheduler.add_listener(
            _log_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED
        )
        with _translate_errors(self._config.database):
            self._config.database.parent.mkdir(parents=True, exist_ok=True)
            scheduler.start()
        _LOGGER.info("scheduler started with %d jobs", len(scheduler.get_jobs()))
        try:
            while not stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            _LOGGER.info("scheduler interrupted")
        finally:
            _shutdown(scheduler, wait=True)

    @contextmanager
    def _session(self) -> Iterator[tuple[BackgroundScheduler, RecordedJobStore]]:
        """Open job store and recorded-jobs table for one handler call.

        Yields:
            Paused scheduler and recorded-jobs store.
        """
        with _translate_errors(self._config.database):
            store = RecordedJobStore(self._config.database)
            scheduler = self._build_scheduler()
            scheduler.start(paused=True)
            try:
                yield scheduler, store
            finally:
                _shutdown(scheduler, wait=False)

    def _build_scheduler(self) -> BackgroundScheduler:
        """Create scheduler bound to the SQLite job store.

        Returns:
            Unstarted scheduler.
        """
        return BackgroundScheduler(
            jobstores={
                "default": SQLAlchemyJobStore(url=f"sqlite:///{self._config.database}")
            },
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self._config.misfire_grace_time,
            },
        )

    def _install(
        self, scheduler: BackgroundScheduler, store: RecordedJobStore, job: Schedule
    ) -> None:
        """Register one job unless its definition and paused state are unchanged.

        Args:
            scheduler: Paused scheduler.
            store: Recorded-jobs store.
            job: Declared schedule.
        """
        aps_id = _aps_job_id(job.name)
        command_line = self._config.command_line(job.config_file, job.name)
        definition_hash = _hash_schedule(job, command_line)
        recorded = store.get(job.name)
        installed = scheduler.get_job(aps_id)
        unchanged = (
            recorded is not None
            and recorded.definition_hash == definition_hash
            and installed is not None
            and (installed.next_run_time is None) == job.has_flag("no-start")
        )
        if unchanged and not job.has_flag("reload"):
            _LOGGER.info("scheduled job %s is unchanged", job.name)
            return
        options: dict[str, object] = {}
        if job.has_flag("no-start"):
            # next_run_time=None stores the job paused
            options["next_run_time"] = None
        scheduler.add_job(
            run_scheduled_job_callback,
            trigger=_build_trigger(job.at),
            args=(command_line,),
            id=aps_id,
            name=job.name,
            replace_existing=True,
            **options,
        )
        store.upsert(
            schedule_name=job.name,
            profile_name=job.origin.name,
            command=job.origin.command,
            config_file=job.config_file,
            definition_hash=definition_hash,
        )
        _LOGGER.info("scheduled job %s created", job.name)


def run_scheduled_job_callback(command_line: list[str]) -> int:
    """Run ``keeper run-schedule`` for one fired job.

    Args:
        command_line: Argument vector built by the scheduler config.

    Returns:
        Exit code of the run.
    """
    return subprocess.run(command_line, check=False).returncode  # noqa: S603


def _reject_removal_only(jobs: Sequence[Schedule]) -> None:
    """Refuse to install placeholders built for removal.

    Args:
        jobs: Jobs about to be installed.

    Raises:
        ScheduleError: With ``INVALID_JOB`` for a removal-only job.
    """
    for job in jobs:
        if job.removal_only:
            raise ScheduleError(
                ScheduleErrorCode.INVALID_JOB,
                f"schedule {job.name} is not declared and cannot be created",
                data={"schedule": job.name},
            )


def _uninstall(
    scheduler: BackgroundScheduler, store: RecordedJobStore, schedule_name: str
) -> bool:
    """Remove one job from the job store and the recorded table.

    Args:
        scheduler: Paused scheduler.
        store: Recorded-jobs store.
        schedule_name: ``<command>@<profile>`` name.

    Returns:
        ``True`` when anything was removed.
    """
    aps_id = _aps_job_id(schedule_name)
    installed = scheduler.get_job(aps_id) is not None
    if installed:
        scheduler.remove_job(aps_id)
    recorded = store.delete(schedule_name)
    return installed or recorded


def _status_row(
    scheduler: BackgroundScheduler, schedule_name: str, at: tuple[str, ...]
) -> JobStatusRow:
    job = scheduler.get_job(_aps_job_id(schedule_name))
    if job is None:
        return JobStatusRow(schedule_name, "not installed", None, at)
    state = "paused" if job.next_run_time is None else "active"
    return JobStatusRow(schedule_name, state, job.next_run_time, at)


def _recorded_row(scheduler: BackgroundScheduler, record: RecordedJob) -> JobStatusRow:
    job = scheduler.get_job(_aps_job_id(record.schedule_name))
    if job is None:
        return JobStatusRow(record.schedule_name, "missing", None)
    state = "paused" if job.next_run_time is None else "active"
    return JobStatusRow(record.schedule_name, state, job.next_run_time)


def _build_trigger(expressions: tuple[str, ...]) -> BaseTrigger:
    """Build one trigger firing on any of the crontab expressions.

    Args:
        expressions: Crontab expressions.

    Returns:
        Cron trigger, or an OR-combination for several expressions.
    """
    triggers = [crontab_trigger(expression) for expression in expressions]
    if len(triggers) == 1:
        return triggers[0]
    return OrTrigger(triggers)


def _hash_schedule(job: Schedule, command_line: list[str]) -> str:
    """Create deterministic hash of the installed job definition.

    Args:
        job: Declared schedule.
        command_line: Command the job runs.

    Returns:
        SHA-256 hash over normalized JSON payload.
    """
    payload = json.dumps(
        {
            "at": list(job.at),
            "command_line": command_line,
            "log": job.log,
            "command_output": job.command_output,
            "ignore_on_battery": job.ignore_on_battery,
            "ignore_on_battery_less_than": job.ignore_on_battery_less_than,
            "lock_mode": job.lock_mode.value,
            "lock_wait": job.lock_wait.total_seconds() if job.lock_wait else None,
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@contextmanager
def _translate_errors(database: Path) -> Iterator[None]:
    """Map store failures to schedule errors.

    Args:
        database: SQLite database path for messages.

    Yields:
        Nothing.

    Raises:
        ScheduleError: ``PERMISSION_DENIED`` or ``HANDLER_FAILED``.
    """
    try:
        yield
    except (OSError, sqlite3.Error, SQLAlchemyError) as exc:
        if isinstance(exc, PermissionError) or _is_permission_failure(exc):
            raise ScheduleError(
                ScheduleErrorCode.PERMISSION_DENIED,
                f"permission denied on scheduler database '{database}': {exc}",
                data={"database": str(database)},
            ) from exc
        raise ScheduleError(
            ScheduleErrorCode.HANDLER_FAILED,
            f"scheduler database '{database}' failed: {exc}",
            data={"database": str(database)},
        ) from exc


def _is_permission_failure(exc: Exception) -> bool:
    message = str(exc).lower()
    return "readonly" in message or "permission denied" in message


def _shutdown(scheduler: BackgroundScheduler, *, wait: bool) -> None:
    """Shutdown scheduler and release SQLAlchemy engines.

    Args:
        scheduler: Started scheduler.
        wait: Whether to wait for running jobs.
    """
    scheduler.shutdown(wait=wait)
    for store in scheduler._jobstores.values():
        if isinstance(store, SQLAlchemyJobStore):
            store.engine.dispose()


def _log_event(event: JobExecutionEvent) -> None:
    """Log APScheduler execution lifecycle events.

    Args:
        event: APScheduler execution event.
    """
    if not event.job_id.startswith(_APS_JOB_PREFIX):
        return
    schedule_name = event.job_id.removeprefix(_APS_JOB_PREFIX)
    if event.code == EVENT_JOB_MISSED:
        _LOGGER.warning("scheduled job %s missed its run time", schedule_name)
    elif event.exception is not None:
        _LOGGER.error("scheduled job %s failed: %s", schedule_name, event.exception)
    else:
        _LOGGER.info("scheduled job %s finished with exit code %s", schedule_name, event.retval)


def _aps_job_id(schedule_name: str) -> str:
    """Map schedule name to APScheduler job id namespace.

    Args:
        schedule_name: ``<command>@<profile>`` name.

    Returns:
        APScheduler job identifier.
    """
    return f"{_APS_JOB_PREFIX}{schedule_name}"
