"""CLI error and run result rendering."""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from keeper.run import RunOutcome


def render_error(console: Console, exc: Exception) -> None:
    """Print one command failure.

    Args:
        console: Rich console.
        exc: Failure to display.
    """
    console.print(Text(f"Error: {exc}", style="bold red"))


def render_run_outcomes(console: Console, outcomes: Sequence[RunOutcome]) -> None:
    """Render one row per profile run.

    Args:
        console: Rich console.
        outcomes: Run outcomes.
    """
    table = Table(title="Scheduled Run", show_header=True, header_style="bold cyan")
    table.add_column("Profile", style="bold")
    table.add_column("Command")
    table.add_column("Result")
    for outcome in outcomes:
        if outcome.skipped:
            result = f"[yellow]skipped[/yellow] ({outcome.reason})"
        elif outcome.returncode == 0:
            result = "[green]ok[/green]"
        else:
            result = f"[red]exit code {outcome.returncode}[/red]"
        table.add_row(outcome.profile_name, outcome.command, result)
    console.print(table)
