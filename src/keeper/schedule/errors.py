"""Deterministic schedule error contracts."""

from __future__ import annotations

from enum import StrEnum


class ScheduleErrorCode(StrEnum):
    """Stable schedule reconciliation error codes."""

    NOT_FOUND = "schedule_owner_not_found"
    LOAD_FAILED = "schedule_owner_load_failed"
    CONFIG_UNAVAILABLE = "schedule_config_unavailable"
    NO_SCHEDULE_FOUND = "schedule_not_declared"
    MALFORMED_IDENTITY = "schedule_identity_malformed"
    PERMISSION_DENIED = "schedule_permission_denied"
    HANDLER_FAILED = "schedule_handler_failed"
    INVALID_JOB = "schedule_job_invalid"


class ScheduleError(RuntimeError):
    """Schedule failure with stable deterministic code."""

    def __init__(
        self,
        code: ScheduleErrorCode,
        message: str,
        *,
        data: dict[str, object] | None = None,
    ) -> None:
        """Create schedule failure.

        Args:
            code: Stable schedule error code.
            message: Human-readable error message.
            data: Optional structured payload for diagnostics.
        """
        super().__init__(message)
        self.code = code
        self.data = data or {}
