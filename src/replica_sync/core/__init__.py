"""Helpers shared by every host of the sync pipeline."""

from .async_utils import gather_limited, init_semaphore, run_sync, run_sync_limited

__all__ = ["gather_limited", "init_semaphore", "run_sync", "run_sync_limited"]
