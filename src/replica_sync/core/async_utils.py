"""Bridge blocking sync passes into asyncio hosts.

Detection and propagation are plain blocking filesystem code. An async host
hands them to worker threads through these helpers; one module-level
semaphore caps how many passes run at once across all profiles.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 2) -> None:
    """Cap concurrent ``run_sync_limited`` calls at *max_parallel*.

    Call once from the host's startup code, inside its event loop.
    """
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info("At most %d sync passes will run in parallel", max_parallel)


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await ``func(*args, **kwargs)`` on a worker thread, ignoring the cap."""
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Like ``run_sync`` but waits for a semaphore slot first.

    Before ``init_semaphore()`` has been called there is no cap.

    Example:
        report = await run_sync_limited(engine.run, False, None)
    """
    if _semaphore is None:
        return await run_sync(func, *args, **kwargs)
    async with _semaphore:
        return await run_sync(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Coroutine[Any, Any, T]],
) -> list[T]:
    """Await *coros* together and return their results in input order.

    The coroutines are expected to go through ``run_sync_limited`` so the
    semaphore bounds the actual thread usage. The first exception raised
    propagates to the caller.
    """
    return list(await asyncio.gather(*coros))
