"""Unit tests for the APScheduler-backed scheduler handler."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest
from rich.console import Console

from keeper.config import BackupConfig, Schedule, ScheduleOrigin
from keeper.schedule import (
    DiagnosticSink,
    ScheduleError,
    ScheduleErrorCode,
    SchedulerConfig,
    build_create_set,
    build_remove_set,
)
from keeper.schedule.apscheduler_handler import APSchedulerHandler, _translate_errors


def _handler(tmp_path: Path) -> tuple[APSchedulerHandler, Console]:
    console = Console(record=True, width=160)
    config = SchedulerConfig(
        database=tmp_path / "db" / "scheduler.sqlite", launcher=("keeper",)
    )
    return APSchedulerHandler(config, console=console), console


def _jobs(config: BackupConfig, name: str) -> list[Schedule]:
    return build_create_set(config, name, DiagnosticSink()).schedules


@pytest.mark.unit
def test_create_jobs_writes_store_and_recorded_table(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """Created jobs should land in the job store and the recorded table."""
    # Arrange - handler over temp database
    handler, _ = _handler(tmp_path)

    # Act - install home jobs
    handler.create_jobs(_jobs(sample_config, "home"))

    # Assert - scheduled with next run and recorded
    with handler._session() as (scheduler, store):
        job = scheduler.get_job("keeper:backup@home")
        assert job is not None
        assert job.next_run_time is not None
        assert job.args == (
            [
                "keeper",
                "--config",
                sample_config.config_file,
                "run-schedule",
                "backup@home",
            ],
        )
        recorded = store.list_recorded(config_file=sample_config.config_file)
    assert [row.schedule_name for row in recorded] == ["backup@home", "check@home"]


@pytest.mark.unit
def test_no_start_jobs_are_stored_paused(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """no-start should install the job without a next run time."""
    handler, console = _handler(tmp_path)
    jobs = _jobs(sample_config, "home")
    for job in jobs:
        job.set_flag("no-start", "")

    handler.create_jobs(jobs)
    handler.report_status("home", jobs)

    with handler._session() as (scheduler, _):
        assert scheduler.get_job("keeper:check@home").next_run_time is None
    assert "paused" in console.export_text()


@pytest.mark.unit
def test_unchanged_jobs_are_skipped_unless_reloaded(
    tmp_path: Path,
    sample_config: BackupConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Re-creating identical jobs is a no-op unless reload is set."""
    # Arrange - jobs already installed
    handler, _ = _handler(tmp_path)
    handler.create_jobs(_jobs(sample_config, "nightly"))

    # Act - create again, then create with reload
    caplog.clear()
    with caplog.at_level(logging.INFO, logger="keeper"):
        handler.create_jobs(_jobs(sample_config, "nightly"))
        reloaded = _jobs(sample_config, "nightly")
        for job in reloaded:
            job.set_flag("reload", "")
        handler.create_jobs(reloaded)

    # Assert - skip then recreate
    messages = [
        record.getMessage()
        for record in caplog.records
        if record.name.startswith("keeper")
    ]
    assert messages == [
        "scheduled job prune@nightly is unchanged",
        "scheduled job prune@nightly created",
    ]


@pytest.mark.unit
def test_removal_only_jobs_are_rejected(tmp_path: Path) -> None:
    """Placeholders must never be installed."""
    handler, _ = _handler(tmp_path)
    placeholder = Schedule(origin=ScheduleOrigin("home", "copy"), removal_only=True)

    with pytest.raises(ScheduleError) as err:
        handler.create_jobs([placeholder])

    assert err.value.code == ScheduleErrorCode.INVALID_JOB


@pytest.mark.unit
def test_remove_jobs_accepts_placeholders_silently(
    tmp_path: Path,
    sample_config: BackupConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Removing a remove set should drop installed jobs without warnings."""
    handler, _ = _handler(tmp_path)
    handler.create_jobs(_jobs(sample_config, "home"))

    with caplog.at_level(logging.INFO, logger="keeper"):
        handler.remove_jobs(
            build_remove_set(sample_config, "home", DiagnosticSink()).schedules
        )

    with handler._session() as (scheduler, store):
        assert scheduler.get_jobs() == []
        assert store.list_recorded(config_file=sample_config.config_file) == ()
    assert not [
        r
        for r in caplog.records
        if r.name.startswith("keeper") and r.levelno >= logging.WARNING
    ]


@pytest.mark.unit
def test_remove_recorded_honors_profile_filter(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """Recorded removal should only drop jobs of the filtered owner."""
    # Arrange - jobs for a profile and a group
    handler, _ = _handler(tmp_path)
    handler.create_jobs(_jobs(sample_config, "home"))
    handler.create_jobs(_jobs(sample_config, "nightly"))

    # Act - remove home jobs only
    handler.remove_recorded(sample_config.config_file, "home")

    # Assert - nightly left in place
    with handler._session() as (scheduler, store):
        assert [job.id for job in scheduler.get_jobs()] == ["keeper:prune@nightly"]
        remaining = store.list_recorded(config_file=sample_config.config_file)
    assert [row.schedule_name for row in remaining] == ["prune@nightly"]


@pytest.mark.unit
def test_remove_recorded_ignores_other_config_files(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """Jobs recorded for another configuration file are left alone."""
    handler, _ = _handler(tmp_path)
    handler.create_jobs(_jobs(sample_config, "nightly"))

    handler.remove_recorded(str(tmp_path / "other.yaml"), "")

    with handler._session() as (scheduler, _):
        assert scheduler.get_job("keeper:prune@nightly") is not None


@pytest.mark.unit
def test_report_recorded_renders_table(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """Recorded jobs should be rendered with their state."""
    handler, console = _handler(tmp_path)
    handler.create_jobs(_jobs(sample_config, "home"))

    handler.report_recorded(sample_config.config_file, "")

    output = console.export_text()
    assert "backup@home" in output
    assert "check@home" in output
    assert "active" in output


@pytest.mark.unit
def test_unusable_database_path_raises_handler_failed(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """Backend failures should be wrapped as HANDLER_FAILED."""
    # Arrange - database parent is a regular file
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    handler = APSchedulerHandler(
        SchedulerConfig(database=blocker / "scheduler.sqlite", launcher=("keeper",)),
        console=Console(record=True),
    )

    # Act / Assert - wrapped failure
    with pytest.raises(ScheduleError) as err:
        handler.create_jobs(_jobs(sample_config, "home"))
    assert err.value.code == ScheduleErrorCode.HANDLER_FAILED


@pytest.mark.unit
@pytest.mark.parametrize(
    "exc",
    [
        PermissionError("denied"),
        sqlite3.OperationalError("attempt to write a readonly database"),
    ],
)
def test_permission_failures_map_to_permission_denied(exc: Exception) -> None:
    """Permission and read-only failures should ask for elevation."""
    with pytest.raises(ScheduleError) as err, _translate_errors(Path("db.sqlite")):
        raise exc

    assert err.value.code == ScheduleErrorCode.PERMISSION_DENIED


@pytest.mark.unit
def test_plain_reinstall_activates_job_stored_paused(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """A paused job should be activated by a later schedule without no-start."""
    # Arrange - jobs installed paused
    handler, _ = _handler(tmp_path)
    paused = _jobs(sample_config, "home")
    for job in paused:
        job.set_flag("no-start", "")
    handler.create_jobs(paused)

    # Act - install again without flags
    handler.create_jobs(_jobs(sample_config, "home"))

    # Assert - job now active
    with handler._session() as (scheduler, _):
        assert scheduler.get_job("keeper:check@home").next_run_time is not None


@pytest.mark.unit
def test_no_start_pauses_already_active_job(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """no-start on an installed active job should pause it."""
    handler, _ = _handler(tmp_path)
    handler.create_jobs(_jobs(sample_config, "home"))
    paused = _jobs(sample_config, "home")
    for job in paused:
        job.set_flag("no-start", "")

    handler.create_jobs(paused)

    with handler._session() as (scheduler, _):
        assert scheduler.get_job("keeper:check@home").next_run_time is None


@pytest.mark.unit
def test_weekday_zero_fires_on_sunday(
    tmp_path: Path, sample_config: BackupConfig
) -> None:
    """Crontab weekday 0 is Sunday in the installed trigger."""
    handler, _ = _handler(tmp_path)
    handler.create_jobs(_jobs(sample_config, "home"))

    with handler._session() as (scheduler, _):
        trigger = scheduler.get_job("keeper:check@home").trigger
    fire_time = trigger.get_next_fire_time(
        None, datetime(2026, 10, 19, tzinfo=UTC)
    )

    assert fire_time is not None
    assert fire_time.strftime("%A %H:%M") == "Sunday 04:30"
