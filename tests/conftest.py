"""Shared pytest fixtures for replica-sync tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

from replica_sync.sync.archive import Archive
from replica_sync.sync.models import SyncConfig

load_dotenv()


@pytest.fixture
def make_replicas(tmp_path):
    """Factory: ``make_replicas(n)`` returns *n* empty replica roots."""

    def _make(count: int = 2) -> tuple[Path, ...]:
        roots = []
        for i in range(count):
            root = tmp_path / f"replica{i}"
            root.mkdir()
            roots.append(root)
        return tuple(roots)

    return _make


@pytest.fixture
def archive_dir(tmp_path):
    return tmp_path / "archive"


@pytest.fixture
def archive(archive_dir):
    return Archive.open(archive_dir)


@pytest.fixture
def two_replicas(make_replicas):
    return make_replicas(2)


@pytest.fixture
def config2(two_replicas):
    """SyncConfig over two empty replicas (content mode)."""
    return SyncConfig(roots=two_replicas)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every REPLICA_SYNC_* / LOG_* variable for the test."""
    for key in list(os.environ):
        if key.startswith(("REPLICA_SYNC_", "LOG_")):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
