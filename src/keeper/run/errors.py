"""Deterministic run error contracts."""

from __future__ import annotations

from enum import StrEnum


class RunErrorCode(StrEnum):
    """Stable run pipeline error codes."""

    TARGET_UNAVAILABLE = "run_target_unavailable"
    BINARY_UNAVAILABLE = "run_binary_unavailable"
    COMMAND_FAILED = "run_command_failed"


class RunError(RuntimeError):
    """Run failure with stable deterministic code."""

    def __init__(
        self,
        code: RunErrorCode,
        message: str,
        *,
        data: dict[str, object] | None = None,
    ) -> None:
        """Create run failure.

        Args:
            code: Stable run error code.
            message: Human-readable error message.
            data: Optional structured payload for diagnostics.
        """
        super().__init__(message)
        self.code = code
        self.data = data or {}
