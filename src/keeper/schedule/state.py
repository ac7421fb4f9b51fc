"""Durable record of the jobs a handler installed."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path


@dataclass(frozen=True)
class RecordedJob:
    """Stored row for one installed job."""

    schedule_name: str
    profile_name: str
    command: str
    config_file: str
    definition_hash: str
    updated_at: str


_COLUMNS = (
    "schedule_name, profile_name, command, config_file, definition_hash, updated_at"
)


class RecordedJobStore:
    """SQLite-backed store keyed by schedule name."""

    def __init__(self, sqlite_path: Path) -> None:
        """Create store and ensure required schema exists.

        Args:
            sqlite_path: SQLite file path.
        """
        self._sqlite_path = sqlite_path
        self._sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def get(self, schedule_name: str) -> RecordedJob | None:
        """Read one recorded job.

        Args:
            schedule_name: ``<command>@<profile>`` name.

        Returns:
            Stored row when present, otherwise ``None``.
        """
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM keeper_recorded_jobs WHERE schedule_name = ?",  # noqa: S608
                (schedule_name,),
            ).fetchone()
        return None if row is None else _to_record(row)

    def upsert(
        self,
        *,
        schedule_name: str,
        profile_name: str,
        command: str,
        config_file: str,
        definition_hash: str,
    ) -> RecordedJob:
        """Insert or update one recorded job.

        Args:
            schedule_name: ``<command>@<profile>`` name.
            profile_name: Owning profile or group.
            command: Scheduled command.
            config_file: Configuration file that declared the job.
            definition_hash: Hash of the installed definition.

        Returns:
            Persisted row.
        """
        updated_at = _utc_now()
        with closing(self._connect()) as conn:
            conn.execute(
                (
                    f"INSERT INTO keeper_recorded_jobs ({_COLUMNS}) "  # noqa: S608
                    "VALUES (?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(schedule_name) DO UPDATE SET "
                    "profile_name = excluded.profile_name, "
                    "command = excluded.command, "
                    "config_file = excluded.config_file, "
                    "definition_hash = excluded.definition_hash, "
                    "updated_at = excluded.updated_at"
                ),
                (schedule_name, profile_name, command, config_file, definition_hash, updated_at),
            )
            conn.commit()
        return RecordedJob(
            schedule_name=schedule_name,
            profile_name=profile_name,
            command=command,
            config_file=config_file,
            definition_hash=definition_hash,
            updated_at=updated_at,
        )

    def delete(self, schedule_name: str) -> bool:
        """Delete one recorded job.

        Args:
            schedule_name: ``<command>@<profile>`` name.

        Returns:
            ``True`` when a row was deleted.
        """
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                "DELETE FROM keeper_recorded_jobs WHERE schedule_name = ?",
                (schedule_name,),
            )
            conn.commit()
        return cursor.rowcount > 0

    def list_recorded(
        self, *, config_file: str, profile_name: str = ""
    ) -> tuple[RecordedJob, ...]:
        """List recorded jobs of one configuration file.

        Args:
            config_file: Configuration file filter.
            profile_name: Profile or group filter, empty for all.

        Returns:
            Rows ordered by profile then command.
        """
        query = f"SELECT {_COLUMNS} FROM keeper_recorded_jobs WHERE config_file = ?"  # noqa: S608
        params: tuple[str, ...] = (config_file,)
        if profile_name:
            query += " AND profile_name = ?"
            params = (config_file, profile_name)
        query += " ORDER BY profile_name, command"
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return tuple(_to_record(row) for row in rows)

    def _initialize(self) -> None:
        """Create required schema if missing."""
        with closing(self._connect()) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS keeper_recorded_jobs ("
                "schedule_name TEXT PRIMARY KEY,"
                "profile_name TEXT NOT NULL,"
                "command TEXT NOT NULL,"
                "config_file TEXT NOT NULL,"
                "definition_hash TEXT NOT NULL,"
                "updated_at TEXT NOT NULL"
                ")"
            )
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        """Create sqlite connection.

        Returns:
            SQLite connection.
        """
        conn = sqlite3.connect(self._sqlite_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        return conn


def _to_record(row: tuple[object, ...]) -> RecordedJob:
    return RecordedJob(*(str(value) for value in row))


def _utc_now() -> str:
    """Return UTC timestamp in stable RFC3339-like format.

    Returns:
        UTC timestamp string.
    """
    return (
        datetime.now(tz=UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    )
