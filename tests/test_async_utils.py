"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, gather_limited, and init_semaphore, using
blocking filesystem work like the sync pipeline hands to worker threads.
"""

import threading
import time

import pytest

import replica_sync.core.async_utils as mod
from replica_sync.core.async_utils import (
    gather_limited,
    init_semaphore,
    run_sync,
    run_sync_limited,
)


@pytest.fixture
def semaphore():
    """Restore the module semaphore after each test."""
    original = mod._semaphore
    yield
    mod._semaphore = original


def _read(path):
    return path.read_text()


async def test_run_sync_calls_function(tmp_path):
    """run_sync runs the callable in a thread and returns its result."""
    target = tmp_path / "a.txt"
    target.write_text("alpha")
    assert await run_sync(_read, target) == "alpha"


async def test_run_sync_passes_kwargs(tmp_path):
    def _write(*, path, text):
        path.write_text(text)
        return len(text)

    written = await run_sync(_write, path=tmp_path / "b.txt", text="beta")
    assert written == 4
    assert (tmp_path / "b.txt").read_text() == "beta"


async def test_run_sync_propagates_exceptions(tmp_path):
    with pytest.raises(FileNotFoundError):
        await run_sync(_read, tmp_path / "missing.txt")


async def test_init_semaphore_sets_value(semaphore):
    init_semaphore(5)
    assert mod._semaphore is not None
    assert mod._semaphore._value == 5


async def test_run_sync_limited_with_semaphore(semaphore, tmp_path):
    init_semaphore(2)
    target = tmp_path / "c.txt"
    target.write_text("gamma")
    assert await run_sync_limited(_read, target) == "gamma"


async def test_run_sync_limited_without_semaphore(semaphore, tmp_path):
    """run_sync_limited falls back to unbounded when semaphore is None."""
    mod._semaphore = None
    target = tmp_path / "d.txt"
    target.write_text("delta")
    assert await run_sync_limited(_read, target) == "delta"


async def test_gather_limited_keeps_order(semaphore, tmp_path):
    init_semaphore(3)
    paths = []
    for i in range(5):
        path = tmp_path / f"f{i}.txt"
        path.write_text(str(i))
        paths.append(path)

    results = await gather_limited([run_sync_limited(_read, p) for p in paths])
    assert results == ["0", "1", "2", "3", "4"]


async def test_gather_limited_empty_list():
    assert await gather_limited([]) == []


async def test_run_sync_limited_concurrency_bound(semaphore):
    """With Semaphore(2) no more than two calls overlap."""
    init_semaphore(2)

    max_concurrent = 0
    current = 0
    lock = threading.Lock()

    def _track(val):
        nonlocal max_concurrent, current
        with lock:
            current += 1
            max_concurrent = max(max_concurrent, current)
        time.sleep(0.05)
        with lock:
            current -= 1
        return val

    results = await gather_limited([run_sync_limited(_track, i) for i in range(6)])

    assert results == [0, 1, 2, 3, 4, 5]
    assert max_concurrent <= 2
