"""Shared fixtures for backupdu tests."""

from pathlib import Path

import pytest

from backupdu.config import ProbeKind, Settings


def make_file(path: Path, size: int = 0) -> Path:
    """Create a file of the given size (sparse), creating parents."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        if size:
            f.truncate(size)
    return path


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings that keep the cache inside tmp_path and avoid external tools."""
    return Settings(
        cache_dir=tmp_path / "cache",
        probe=ProbeKind.NATIVE,
        low_priority=False,
        kill_grace=0.5,
        list_timeout=5,
        du_timeout=5,
        archive_timeout=5,
    )
