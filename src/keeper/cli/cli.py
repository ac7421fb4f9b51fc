"""Typer CLI entrypoint for Keeper."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from keeper.cli.rendering import render_error, render_run_outcomes
from keeper.config import (
    BackupConfig,
    ConfigError,
    SchedulerBackend,
    load_backup_config,
)
from keeper.run import ResticRunner, RunError, summarize
from keeper.schedule import (
    DiagnosticSink,
    ElevationPolicy,
    ScheduleCommandContext,
    ScheduleError,
    ScheduleErrorCode,
    ScheduleFlags,
    create_schedule,
    prepare_scheduled_run,
    remove_schedule,
    status_schedule,
)
from keeper.schedule.apscheduler_handler import APSchedulerHandler
from keeper.schedule.backends import new_handler
from keeper.schedule.elevation import ELEVATED_FLAG
from keeper.schedule.handler import DEFAULT_LAUNCHER
from keeper.schedule.jobs import load_scheduler_config

app = typer.Typer(help="Keeper: scheduled restic backups")
_CONSOLE = Console()
_LOGGING_CONFIGURED = False
_LOG_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class _CliState:
    """Global options shared by every command."""

    config_file: Path
    name: str
    elevation: ElevationPolicy


def _configure_logging(*, verbose: bool) -> None:
    """Configure Rich-backed logging once for CLI commands.

    Args:
        verbose: Whether debug messages are shown.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
    )
    _LOGGING_CONFIGURED = True


@contextmanager
def _log_file(target: str) -> Iterator[None]:
    """Copy log records to a file while a scheduled run executes.

    Args:
        target: Log file path, empty to keep console logging only.

    Yields:
        Nothing.
    """
    if not target:
        yield
        return
    path = Path(target).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_LOG_FILE_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    try:
        yield
    finally:
        root.removeHandler(handler)
        handler.close()


def _elevation_policy(*, enabled: bool, elevated: bool) -> ElevationPolicy:
    """Build the elevation policy of the running command.

    Args:
        enabled: Whether ``--no-elevation`` was omitted.
        elevated: Whether this process is already an elevated relaunch.

    Returns:
        Elevation policy relaunching the current arguments.
    """
    arguments = tuple(arg for arg in sys.argv[1:] if arg != ELEVATED_FLAG)
    return ElevationPolicy(
        enabled=enabled,
        elevated=elevated,
        launcher=DEFAULT_LAUNCHER,
        arguments=arguments,
    )


def _load_config(state: _CliState) -> BackupConfig:
    """Load configuration or exit with a rendered error.

    Args:
        state: Global CLI options.

    Returns:
        Configuration provider.

    Raises:
        Exit: Raised with code 1 when the file cannot be loaded.
    """
    try:
        return load_backup_config(state.config_file)
    except ConfigError as exc:
        render_error(_CONSOLE, exc)
        raise typer.Exit(code=1) from exc


def _run_schedule_command(
    ctx: typer.Context,
    operation: Callable[[ScheduleCommandContext], None],
    flags: ScheduleFlags,
) -> None:
    """Run one reconciler flow and map failures to exit code 1.

    Args:
        ctx: Typer context holding global options.
        operation: Reconciler flow.
        flags: Command-line switches.

    Raises:
        Exit: Raised with code 1 on failure.
    """
    state: _CliState = ctx.obj
    command_ctx = ScheduleCommandContext(
        config=_load_config(state),
        profile_name=state.name,
        flags=flags,
        elevation=state.elevation,
        diagnostics=DiagnosticSink(),
        handler_factory=partial(new_handler, console=_CONSOLE),
    )
    try:
        operation(command_ctx)
    except ScheduleError as exc:
        render_error(_CONSOLE, exc)
        raise typer.Exit(code=1) from exc


@app.callback()
def main(  # noqa: PLR0913
    ctx: typer.Context,
    config_file: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            file_okay=True,
            dir_okay=False,
            help="Path to the Keeper YAML/JSON configuration file.",
        ),
    ] = Path("keeper.yaml"),
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Profile or group name."),
    ] = "default",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show debug messages."),
    ] = False,
    no_elevation: Annotated[
        bool,
        typer.Option(
            "--no-elevation",
            help="Never retry with elevated privileges on permission errors.",
        ),
    ] = False,
    elevated: Annotated[
        bool,
        typer.Option(ELEVATED_FLAG, hidden=True),
    ] = False,
) -> None:
    """Keeper global options.

    Args:
        ctx: Typer context.
        config_file: Configuration file path.
        name: Profile or group the command applies to.
        verbose: Whether debug messages are shown.
        no_elevation: Whether elevation retry is disabled.
        elevated: Whether this process is an elevated relaunch.
    """
    _configure_logging(verbose=verbose)
    ctx.obj = _CliState(
        config_file=config_file,
        name=name,
        elevation=_elevation_policy(enabled=not no_elevation, elevated=elevated),
    )


@app.command("schedule")
def schedule_command(
    ctx: typer.Context,
    all_targets: Annotated[
        bool,
        typer.Option("--all", help="Schedule every profile and group."),
    ] = False,
    no_start: Annotated[
        bool,
        typer.Option("--no-start", help="Install jobs without activating them."),
    ] = False,
    reload: Annotated[
        bool,
        typer.Option("--reload", help="Reinstall jobs even when unchanged."),
    ] = False,
) -> None:
    """Install the declared schedules of a profile or group.

    Args:
        ctx: Typer context.
        all_targets: Whether every profile and group is selected.
        no_start: Whether jobs are installed paused.
        reload: Whether unchanged jobs are reinstalled.
    """
    flags = ScheduleFlags(all=all_targets, no_start=no_start, reload=reload)
    _run_schedule_command(ctx, create_schedule, flags)


@app.command("unschedule")
def unschedule_command(
    ctx: typer.Context,
    all_targets: Annotated[
        bool,
        typer.Option("--all", help="Remove jobs of every profile and group."),
    ] = False,
    legacy: Annotated[
        bool,
        typer.Option("--legacy", help="Use the deprecated per-profile removal."),
    ] = False,
) -> None:
    """Remove installed schedules.

    Args:
        ctx: Typer context.
        all_targets: Whether every profile and group is selected.
        legacy: Whether the deprecated protocol is used.
    """
    _run_schedule_command(
        ctx, remove_schedule, ScheduleFlags(all=all_targets, legacy=legacy)
    )


@app.command("status")
def status_command(
    ctx: typer.Context,
    all_targets: Annotated[
        bool,
        typer.Option("--all", help="Report jobs of every profile and group."),
    ] = False,
    legacy: Annotated[
        bool,
        typer.Option("--legacy", help="Use the deprecated per-profile status."),
    ] = False,
) -> None:
    """Report installed schedules.

    Args:
        ctx: Typer context.
        all_targets: Whether every profile and group is selected.
        legacy: Whether the deprecated protocol is used.
    """
    _run_schedule_command(
        ctx, status_schedule, ScheduleFlags(all=all_targets, legacy=legacy)
    )


@app.command(
    "run-schedule",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run_schedule_command(
    ctx: typer.Context,
    schedule_name: Annotated[
        str | None,
        typer.Argument(help="Schedule name as <command>@<profile-or-group>."),
    ] = None,
) -> None:
    """Run the command of a fired schedule.

    Args:
        ctx: Typer context.
        schedule_name: ``<command>@<profile-or-group>`` name.

    Raises:
        Exit: Raised with code 1 on failure.
    """
    state: _CliState = ctx.obj
    config = _load_config(state)
    arguments = [schedule_name, *ctx.args] if schedule_name else []
    try:
        context = prepare_scheduled_run(config, arguments)
    except ScheduleError as exc:
        render_error(_CONSOLE, exc)
        raise typer.Exit(code=1) from exc
    with _log_file(context.log_target):
        try:
            outcomes = ResticRunner(config).run(context)
        except RunError as exc:
            render_error(_CONSOLE, exc)
            raise typer.Exit(code=1) from exc
    render_run_outcomes(_CONSOLE, outcomes)
    raise typer.Exit(code=summarize(outcomes))


@app.command("serve")
def serve_command(ctx: typer.Context) -> None:
    """Run the APScheduler backend and fire installed jobs.

    Args:
        ctx: Typer context.

    Raises:
        Exit: Raised with code 1 on failure.
    """
    state: _CliState = ctx.obj
    config = _load_config(state)
    try:
        scheduler_config = load_scheduler_config(config)
        if scheduler_config.backend != SchedulerBackend.APSCHEDULER:
            raise ScheduleError(
                ScheduleErrorCode.HANDLER_FAILED,
                "serve is only available with the apscheduler backend",
            )
        APSchedulerHandler(scheduler_config, console=_CONSOLE).serve()
    except ScheduleError as exc:
        render_error(_CONSOLE, exc)
        raise typer.Exit(code=1) from exc


if __name__ == "__main__":
    app()
