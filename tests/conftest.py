"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from keeper.config import BackupConfig, load_backup_config
from tests.unit.helpers import FakeHandler

SAMPLE_CONFIG = """\
global:
  restic_binary: restic
  scheduler:
    backend: apscheduler
    database: {database}
profiles:
  home:
    repository: /srv/restic/home
    password_file: key.txt
    backup:
      args: [--exclude-caches, /home]
    schedules:
      backup:
        at: "0 3 * * *"
        log: /var/log/keeper-home.log
        ignore_on_battery: true
      check:
        at: ["30 4 * * 0"]
  media:
    repository: /srv/restic/media
    forget:
      schedule: "15 5 * * *"
      schedule_lock_mode: ignore
  scratch:
    repository: /srv/restic/scratch
groups:
  nightly:
    profiles: [home, media]
    schedules:
      prune:
        at: "0 6 * * 1"
"""


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """Temporary workspace root holding configuration and scheduler files."""
    return tmp_path


@pytest.fixture
def write_config(workspace_root: Path) -> Callable[..., BackupConfig]:
    """Write configuration YAML under the workspace and load it."""

    def _write(content: str, name: str = "keeper.yaml") -> BackupConfig:
        path = workspace_root / name
        path.write_text(content, encoding="utf-8")
        return load_backup_config(path)

    return _write


@pytest.fixture
def sample_config(
    workspace_root: Path, write_config: Callable[..., BackupConfig]
) -> BackupConfig:
    """Configuration with three profiles and one group."""
    database = workspace_root / "db" / "scheduler.sqlite"
    return write_config(SAMPLE_CONFIG.format(database=database))


@pytest.fixture
def fake_handler() -> FakeHandler:
    """Recording scheduler handler."""
    return FakeHandler()
