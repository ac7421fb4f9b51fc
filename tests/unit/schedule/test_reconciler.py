"""Unit tests for create, remove and status reconciliation flows."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import pytest

from keeper.config import BackupConfig, Schedule
from keeper.schedule import (
    DiagnosticSink,
    ElevationPolicy,
    ScheduleCommandContext,
    ScheduleError,
    ScheduleErrorCode,
    ScheduleFlags,
    create_schedule,
    remove_schedule,
    status_schedule,
)
from tests.unit.helpers import FakeHandler


class _RecordingElevator:
    def __init__(self, returncode: int = 0) -> None:
        self.command_lines: list[list[str]] = []
        self._returncode = returncode

    def relaunch(self, command_line: Sequence[str]) -> int:
        self.command_lines.append(list(command_line))
        return self._returncode


def _context(
    config: BackupConfig,
    handler: FakeHandler,
    *,
    name: str = "home",
    flags: ScheduleFlags | None = None,
    elevation: ElevationPolicy | None = None,
    elevator: _RecordingElevator | None = None,
) -> ScheduleCommandContext:
    return ScheduleCommandContext(
        config=config,
        profile_name=name,
        flags=flags or ScheduleFlags(),
        elevation=elevation or ElevationPolicy(enabled=False),
        diagnostics=DiagnosticSink(),
        handler_factory=lambda _: handler,
        elevator=elevator,
    )


def _created(handler: FakeHandler) -> list[list[Schedule]]:
    return [payload for method, payload in handler.calls if method == "create_jobs"]


@pytest.mark.unit
def test_create_dispatches_declared_jobs_of_one_profile(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Create should hand the declared schedules to the handler once."""
    # Act - schedule one profile
    create_schedule(_context(sample_config, fake_handler))

    # Assert - one create call with both jobs
    created = _created(fake_handler)
    assert len(created) == 1
    assert sorted(job.name for job in created[0]) == ["backup@home", "check@home"]


@pytest.mark.unit
def test_create_all_skips_targets_without_schedules(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """--all should skip profiles that declare nothing instead of failing."""
    # Act - schedule everything
    create_schedule(
        _context(sample_config, fake_handler, flags=ScheduleFlags(all=True))
    )

    # Assert - scratch skipped, order preserved
    owners = [jobs[0].origin.name for jobs in _created(fake_handler)]
    assert owners == ["home", "media", "nightly"]


@pytest.mark.unit
def test_create_single_target_without_schedules_fails(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """A requested profile without schedules is an error."""
    with pytest.raises(ScheduleError) as err:
        create_schedule(_context(sample_config, fake_handler, name="scratch"))

    assert err.value.code == ScheduleErrorCode.NO_SCHEDULE_FOUND
    assert fake_handler.calls == []


@pytest.mark.unit
def test_create_resolution_failure_dispatches_nothing(
    write_config: Callable[..., BackupConfig], fake_handler: FakeHandler
) -> None:
    """One unresolvable target should abort before any job is created."""
    # Arrange - valid profile followed by an invalid one
    config = write_config(
        "profiles:\n"
        "  good:\n"
        "    schedules:\n"
        "      backup:\n"
        '        at: "0 1 * * *"\n'
        "  broken:\n"
        "    schedules: 12\n"
    )

    # Act - schedule everything
    with pytest.raises(ScheduleError) as err:
        create_schedule(_context(config, fake_handler, flags=ScheduleFlags(all=True)))

    # Assert - load failure, handler untouched
    assert err.value.code == ScheduleErrorCode.LOAD_FAILED
    assert fake_handler.calls == []


@pytest.mark.unit
def test_create_all_on_empty_configuration_is_a_no_op(
    write_config: Callable[..., BackupConfig], fake_handler: FakeHandler
) -> None:
    """--all over an empty configuration succeeds without dispatching."""
    config = write_config("global: {}\n")

    create_schedule(_context(config, fake_handler, flags=ScheduleFlags(all=True)))

    assert fake_handler.calls == []


@pytest.mark.unit
def test_create_marks_jobs_with_command_line_flags(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """--no-start and --reload should set handler flags on every job."""
    create_schedule(
        _context(
            sample_config,
            fake_handler,
            flags=ScheduleFlags(no_start=True, reload=True),
        )
    )

    jobs = _created(fake_handler)[0]
    assert all(job.flags == {"no-start": "", "reload": ""} for job in jobs)


@pytest.mark.unit
def test_create_without_flags_leaves_jobs_unmarked(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Jobs should carry no flags unless requested."""
    create_schedule(_context(sample_config, fake_handler))

    assert all(job.flags == {} for job in _created(fake_handler)[0])


@pytest.mark.unit
def test_create_dispatch_failure_aborts_remaining_targets(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """A handler failure during create is fatal."""
    fake_handler.failures["create_jobs:media"] = ScheduleError(
        ScheduleErrorCode.HANDLER_FAILED, "store failed"
    )

    with pytest.raises(ScheduleError):
        create_schedule(
            _context(sample_config, fake_handler, flags=ScheduleFlags(all=True))
        )

    owners = [jobs[0].origin.name for jobs in _created(fake_handler)]
    assert owners == ["home", "media"]


@pytest.mark.unit
def test_create_flushes_deprecation_notices(
    sample_config: BackupConfig,
    fake_handler: FakeHandler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Diagnostics collected while loading are logged when create returns."""
    ctx = _context(sample_config, fake_handler, name="media")

    with caplog.at_level(logging.INFO, logger="keeper"):
        create_schedule(ctx)

    assert any("deprecated" in record.getMessage() for record in caplog.records)
    assert ctx.diagnostics.entries == ()


@pytest.mark.unit
def test_create_permission_failure_relaunches_elevated(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """A permission failure should be retried once through the elevator."""
    # Arrange - handler denies, elevation enabled
    fake_handler.failures["create_jobs"] = ScheduleError(
        ScheduleErrorCode.PERMISSION_DENIED, "read-only database"
    )
    elevator = _RecordingElevator()
    policy = ElevationPolicy(
        launcher=("keeper",), arguments=("--name", "home", "schedule")
    )

    # Act - create
    create_schedule(
        _context(sample_config, fake_handler, elevation=policy, elevator=elevator)
    )

    # Assert - one relaunch with the elevated marker
    assert elevator.command_lines == [
        ["keeper", "--elevated", "--name", "home", "schedule"]
    ]


@pytest.mark.unit
def test_remove_current_protocol_uses_recorded_jobs(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Current removal should filter recorded jobs by profile name."""
    remove_schedule(_context(sample_config, fake_handler))

    assert fake_handler.calls == [
        ("remove_recorded", (sample_config.config_file, "home"))
    ]


@pytest.mark.unit
def test_remove_current_protocol_all_uses_empty_filter(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """--all removal should not filter by profile."""
    remove_schedule(
        _context(sample_config, fake_handler, flags=ScheduleFlags(all=True))
    )

    assert fake_handler.calls == [("remove_recorded", (sample_config.config_file, ""))]


@pytest.mark.unit
def test_remove_current_protocol_failure_is_fatal(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Recorded-jobs removal failures should propagate."""
    fake_handler.failures["remove_recorded"] = ScheduleError(
        ScheduleErrorCode.HANDLER_FAILED, "store failed"
    )

    with pytest.raises(ScheduleError):
        remove_schedule(_context(sample_config, fake_handler))


@pytest.mark.unit
def test_legacy_remove_continues_after_profile_failure(
    sample_config: BackupConfig,
    fake_handler: FakeHandler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Legacy removal is best-effort across profiles."""
    # Arrange - removal fails for home only
    fake_handler.failures["remove_jobs:home"] = ScheduleError(
        ScheduleErrorCode.HANDLER_FAILED, "crontab install failed"
    )
    ctx = _context(
        sample_config, fake_handler, flags=ScheduleFlags(all=True, legacy=True)
    )

    # Act - remove everything
    with caplog.at_level(logging.INFO, logger="keeper"):
        remove_schedule(ctx)

    # Assert - every target attempted, failure logged, no recorded-jobs pass
    removed = [
        payload[0].origin.name
        for method, payload in fake_handler.calls
        if method == "remove_jobs"
    ]
    assert removed == ["home", "media", "scratch", "nightly"]
    assert "remove_recorded" not in fake_handler.methods()
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert [r.getMessage() for r in errors] == ["home: crontab install failed"]


@pytest.mark.unit
def test_legacy_remove_resolution_failure_aborts(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Unknown names abort legacy removal."""
    with pytest.raises(ScheduleError) as err:
        remove_schedule(
            _context(
                sample_config, fake_handler, name="nope", flags=ScheduleFlags(legacy=True)
            )
        )

    assert err.value.code == ScheduleErrorCode.NOT_FOUND
    assert fake_handler.calls == []


@pytest.mark.unit
def test_legacy_remove_sends_placeholders(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Legacy removal should include removal-only placeholders."""
    remove_schedule(
        _context(sample_config, fake_handler, flags=ScheduleFlags(legacy=True))
    )

    _, jobs = fake_handler.calls[0]
    assert [job.removal_only for job in jobs] == [False, False, True, True, True]


@pytest.mark.unit
def test_status_current_protocol_reports_recorded_jobs(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Current status should ask for recorded jobs of the profile."""
    status_schedule(_context(sample_config, fake_handler))

    assert fake_handler.calls == [
        ("report_recorded", (sample_config.config_file, "home"))
    ]


@pytest.mark.unit
def test_legacy_status_single_target_without_schedules_succeeds(
    sample_config: BackupConfig,
    fake_handler: FakeHandler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Absence of schedules is a warning for status, not an error."""
    with caplog.at_level(logging.WARNING):
        status_schedule(
            _context(
                sample_config,
                fake_handler,
                name="scratch",
                flags=ScheduleFlags(legacy=True),
            )
        )

    assert fake_handler.calls == []
    assert any("has no schedule" in r.getMessage() for r in caplog.records)


@pytest.mark.unit
def test_legacy_status_single_target_reports_and_returns(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Legacy status of one target should not run the recorded-jobs report."""
    status_schedule(
        _context(sample_config, fake_handler, flags=ScheduleFlags(legacy=True))
    )

    assert fake_handler.methods() == ["report_status"]
    profile_name, jobs = fake_handler.calls[0][1]
    assert profile_name == "home"
    assert len(jobs) == 2


@pytest.mark.unit
def test_legacy_status_single_target_failure_is_fatal(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Report failures for a single legacy target propagate."""
    fake_handler.failures["report_status"] = ScheduleError(
        ScheduleErrorCode.HANDLER_FAILED, "store failed"
    )

    with pytest.raises(ScheduleError):
        status_schedule(
            _context(sample_config, fake_handler, flags=ScheduleFlags(legacy=True))
        )


@pytest.mark.unit
def test_legacy_status_all_continues_then_reports_recorded(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """Legacy --all status tolerates failures then runs the current protocol."""
    # Arrange - report fails for media
    fake_handler.failures["report_status:media"] = ScheduleError(
        ScheduleErrorCode.HANDLER_FAILED, "store failed"
    )

    # Act - status of everything
    status_schedule(
        _context(
            sample_config, fake_handler, flags=ScheduleFlags(all=True, legacy=True)
        )
    )

    # Assert - scratch skipped, nightly still reported, recorded pass last
    reported = [
        payload[0] for method, payload in fake_handler.calls if method == "report_status"
    ]
    assert reported == ["home", "media", "nightly"]
    assert fake_handler.calls[-1] == (
        "report_recorded",
        (sample_config.config_file, ""),
    )


@pytest.mark.unit
def test_legacy_status_all_can_skip_recorded_report(
    write_config: Callable[..., BackupConfig], fake_handler: FakeHandler
) -> None:
    """The recorded-jobs pass after legacy --all status is configurable."""
    config = write_config(
        "global:\n"
        "  legacy_status_reports_recorded: false\n"
        "profiles:\n"
        "  home:\n"
        "    schedules:\n"
        "      backup:\n"
        '        at: "0 1 * * *"\n'
    )

    status_schedule(
        _context(config, fake_handler, flags=ScheduleFlags(all=True, legacy=True))
    )

    assert fake_handler.methods() == ["report_status"]


@pytest.mark.unit
def test_create_all_stops_after_elevated_retry(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """The elevated relaunch covers every target, so dispatch stops after it."""
    # Arrange - three pending targets, every create denied
    fake_handler.failures["create_jobs"] = ScheduleError(
        ScheduleErrorCode.PERMISSION_DENIED, "read-only database"
    )
    elevator = _RecordingElevator()
    policy = ElevationPolicy(launcher=("keeper",), arguments=("schedule", "--all"))

    # Act - schedule everything
    create_schedule(
        _context(
            sample_config,
            fake_handler,
            flags=ScheduleFlags(all=True),
            elevation=policy,
            elevator=elevator,
        )
    )

    # Assert - one attempt, one relaunch
    assert fake_handler.methods() == ["create_jobs"]
    assert elevator.command_lines == [["keeper", "--elevated", "schedule", "--all"]]


@pytest.mark.unit
def test_create_failed_elevated_retry_is_fatal(
    sample_config: BackupConfig, fake_handler: FakeHandler
) -> None:
    """A failing relaunch surfaces as a permission error."""
    fake_handler.failures["create_jobs"] = ScheduleError(
        ScheduleErrorCode.PERMISSION_DENIED, "read-only database"
    )
    elevator = _RecordingElevator(returncode=1)

    with pytest.raises(ScheduleError) as err:
        create_schedule(
            _context(
                sample_config,
                fake_handler,
                flags=ScheduleFlags(all=True),
                elevation=ElevationPolicy(launcher=("keeper",)),
                elevator=elevator,
            )
        )

    assert err.value.code == ScheduleErrorCode.PERMISSION_DENIED
    assert fake_handler.methods() == ["create_jobs"]
    assert len(elevator.command_lines) == 1


@pytest.mark.unit
def test_legacy_status_all_invalid_global_section_is_schedule_error(
    write_config: Callable[..., BackupConfig], fake_handler: FakeHandler
) -> None:
    """An invalid global section is reported as CONFIG_UNAVAILABLE."""
    config = write_config("global:\n  unknown: 1\n")

    with pytest.raises(ScheduleError) as err:
        status_schedule(
            _context(config, fake_handler, flags=ScheduleFlags(all=True, legacy=True))
        )

    assert err.value.code == ScheduleErrorCode.CONFIG_UNAVAILABLE
    assert fake_handler.calls == []
