"""Progress callbacks used by detection and propagation.

Callbacks are invoked synchronously on the thread running the pass.
``NullProgress`` satisfies both protocols and does nothing.
"""

from __future__ import annotations

from typing import Protocol


class DetectProgress(Protocol):
    def checking_path(self, path: str, checked: int) -> None:
        """Called before *path* is classified; *checked* counts paths so far."""
        ...  # pragma: no cover

    def reading_directory(self, path: str, replica_index: int) -> None:
        """Called when a directory of one replica is listed."""
        ...  # pragma: no cover


class PropagateProgress(Protocol):
    def transferring(
        self, path: str, replica_index: int, copied: int, total: int
    ) -> None:
        """Called after each chunk copied into *replica_index*."""
        ...  # pragma: no cover

    def applied(self, path: str, replica_index: int) -> None:
        """Called once the master's entry is in place in *replica_index*."""
        ...  # pragma: no cover


class NullProgress:
    """No-op progress sink."""

    def checking_path(self, path: str, checked: int) -> None:
        pass

    def reading_directory(self, path: str, replica_index: int) -> None:
        pass

    def transferring(
        self, path: str, replica_index: int, copied: int, total: int
    ) -> None:
        pass

    def applied(self, path: str, replica_index: int) -> None:
        pass


class SyncProgress(DetectProgress, PropagateProgress, Protocol):
    """Both protocols at once; what ``SyncEngine.run`` reports to."""
