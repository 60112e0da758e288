"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, gather_limited, and init_semaphore.
"""

import asyncio
import threading

import pytest

import mindmap_sync.core.async_utils as mod
from mindmap_sync.core.async_utils import (
    gather_limited,
    init_semaphore,
    run_sync,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    """Simple sync function for testing."""
    return a + b


@pytest.fixture
def restore_semaphore():
    original = mod._semaphore
    yield
    mod._semaphore = original


async def test_run_sync_calls_function():
    """run_sync runs the function and returns its result."""
    assert await run_sync(_sync_add, 3, 4) == 7


async def test_run_sync_runs_off_loop_thread():
    caller = threading.get_ident()
    worker = await run_sync(threading.get_ident)
    assert worker != caller


async def test_init_semaphore_sets_value(restore_semaphore):
    init_semaphore(3)
    assert mod._semaphore is not None
    assert mod._semaphore._value == 3


async def test_run_sync_limited_with_semaphore(restore_semaphore):
    init_semaphore(2)
    assert await run_sync_limited(_sync_add, 10, 20) == 30


async def test_run_sync_limited_without_semaphore(restore_semaphore):
    """run_sync_limited falls back to unbounded when semaphore is None."""
    mod._semaphore = None
    assert await run_sync_limited(_sync_add, 1, 2) == 3


async def test_run_sync_limited_bounds_concurrency(restore_semaphore):
    init_semaphore(2)
    lock = threading.Lock()
    active = 0
    peak = 0

    def _work():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        threading.Event().wait(0.05)
        with lock:
            active -= 1

    await asyncio.gather(*(run_sync_limited(_work) for _ in range(6)))

    assert peak <= 2


async def test_gather_limited_preserves_order():
    async def _delayed(value, delay):
        await asyncio.sleep(delay)
        return value

    results = await gather_limited(
        [_delayed("a", 0.03), _delayed("b", 0.0), _delayed("c", 0.01)]
    )
    assert results == ["a", "b", "c"]


async def test_gather_limited_propagates_errors():
    async def _fail():
        raise ValueError("nope")

    with pytest.raises(ValueError, match="nope"):
        await gather_limited([_fail()])


async def test_gather_limited_empty():
    assert await gather_limited([]) == []
