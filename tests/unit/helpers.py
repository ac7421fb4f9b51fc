"""Test-only helpers for unit tests."""

from __future__ import annotations

from collections.abc import Sequence

from keeper.config import Schedule


class FakeHandler:
    """Scheduler handler recording every call."""

    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.calls: list[tuple[str, object]] = []
        self.failures = failures or {}

    def create_jobs(self, jobs: Sequence[Schedule]) -> None:
        self._record("create_jobs", list(jobs))

    def remove_jobs(self, jobs: Sequence[Schedule]) -> None:
        self._record("remove_jobs", list(jobs))

    def report_status(self, profile_name: str, jobs: Sequence[Schedule]) -> None:
        self._record("report_status", (profile_name, list(jobs)))

    def remove_recorded(self, config_file: str, profile_name: str) -> None:
        self._record("remove_recorded", (config_file, profile_name))

    def report_recorded(self, config_file: str, profile_name: str) -> None:
        self._record("report_recorded", (config_file, profile_name))

    def methods(self) -> list[str]:
        """Return called method names in order."""
        return [name for name, _ in self.calls]

    def _record(self, method: str, payload: object) -> None:
        self.calls.append((method, payload))
        key = method
        if isinstance(payload, tuple) and isinstance(payload[0], str):
            key = f"{method}:{payload[0]}"
        elif isinstance(payload, list) and payload:
            key = f"{method}:{payload[0].origin.name}"
        failure = self.failures.get(key) or self.failures.get(method)
        if failure is not None:
            raise failure
