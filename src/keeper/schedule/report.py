"""Rich rendering of scheduled job status."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from rich.console import Console
from rich.table import Table


@dataclass(frozen=True)
class JobStatusRow:
    """Display row for one scheduled job."""

    schedule_name: str
    state: str
    next_run: datetime | None
    at: tuple[str, ...] = ()


def render_job_table(
    console: Console, *, title: str, rows: Sequence[JobStatusRow]
) -> None:
    """Render job status rows as a table.

    Args:
        console: Rich console.
        title: Table title.
        rows: Status rows.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Schedule", style="bold")
    table.add_column("State", style="green")
    table.add_column("Next Run")
    table.add_column("At")
    for row in rows:
        table.add_row(
            row.schedule_name,
            row.state,
            row.next_run.isoformat(timespec="minutes") if row.next_run else "-",
            ", ".join(row.at) or "-",
        )
    console.print(table)
