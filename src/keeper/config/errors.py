"""Deterministic configuration error contracts."""

from __future__ import annotations

from enum import StrEnum


class ConfigErrorCode(StrEnum):
    """Stable configuration error codes."""

    NOT_FOUND = "config_not_found"
    INVALID = "config_invalid"


class ConfigError(RuntimeError):
    """Configuration failure with stable deterministic code."""

    def __init__(
        self,
        code: ConfigErrorCode,
        message: str,
        *,
        data: dict[str, object] | None = None,
    ) -> None:
        """Create configuration failure.

        Args:
            code: Stable configuration error code.
            message: Human-readable error message.
            data: Optional structured payload for diagnostics.
        """
        super().__init__(message)
        self.code = code
        self.data = data or {}
