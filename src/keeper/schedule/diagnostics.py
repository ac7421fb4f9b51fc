"""Diagnostic accumulator flushed once per command."""

from __future__ import annotations

import logging
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

_LOGGER = logging.getLogger("keeper")


class DiagnosticLevel(StrEnum):
    """Severity of one collected diagnostic."""

    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"


class ScheduleDiagnostic(BaseModel):
    """One deprecation notice, configuration issue or tolerated failure."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    level: DiagnosticLevel
    source: str
    message: str


_LOG_LEVELS = {
    DiagnosticLevel.NOTICE: logging.INFO,
    DiagnosticLevel.WARNING: logging.WARNING,
    DiagnosticLevel.ERROR: logging.ERROR,
}


class DiagnosticSink:
    """Collect diagnostics during a command and emit them at its boundary."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        """Create an empty sink.

        Args:
            logger: Logger used by :meth:`flush`, defaults to ``keeper``.
        """
        self._logger = logger or _LOGGER
        self._entries: list[ScheduleDiagnostic] = []

    @property
    def entries(self) -> tuple[ScheduleDiagnostic, ...]:
        """Diagnostics collected since the last flush."""
        return tuple(self._entries)

    def notice(self, source: str, message: str) -> None:
        """Record a deprecation notice.

        Args:
            source: Profile or group the notice is about.
            message: Notice text.
        """
        self._add(DiagnosticLevel.NOTICE, source, message)

    def warning(self, source: str, message: str) -> None:
        """Record a configuration issue.

        Args:
            source: Origin of the issue.
            message: Issue text.
        """
        self._add(DiagnosticLevel.WARNING, source, message)

    def error(self, source: str, error: Exception) -> None:
        """Record a failure that did not stop the command.

        Args:
            source: Profile or group that failed.
            error: Failure raised for that target.
        """
        self._add(DiagnosticLevel.ERROR, source, str(error))

    def errors(self) -> tuple[ScheduleDiagnostic, ...]:
        """Return collected error diagnostics.

        Returns:
            Error entries in collection order.
        """
        return tuple(
            item for item in self._entries if item.level == DiagnosticLevel.ERROR
        )

    def flush(self) -> tuple[ScheduleDiagnostic, ...]:
        """Log and clear collected diagnostics.

        Returns:
            Diagnostics that were emitted.
        """
        flushed = tuple(self._entries)
        self._entries.clear()
        for item in flushed:
            self._logger.log(
                _LOG_LEVELS[item.level], "%s: %s", item.source, item.message
            )
        return flushed

    def _add(self, level: DiagnosticLevel, source: str, message: str) -> None:
        self._entries.append(
            ScheduleDiagnostic(level=level, source=source, message=message)
        )
