"""Exception hierarchy for the sync pipeline.

Every error raised by the archive, the detector, and the propagator
derives from ``SyncError`` so hosts can catch the whole family at once.

- ``ArchiveError``: archive directory cannot be created/read, unknown
  format, corrupt record, failed write.
- ``DetectError``: replica root missing or unreadable, invalid candidate
  path, I/O failure while walking.
- ``PropagateError``: base for per-difference propagation failures; each
  subclass has a stable ``kind`` used in results and reports.
"""

from __future__ import annotations

from pathlib import Path


class SyncError(Exception):
    """Base class for all replica sync errors.

    Args:
        message: Human-readable description.
        path: Optional filesystem path the error refers to.
    """

    def __init__(
        self, message: str, path: Path | str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path is None:
            return self.message
        return f"{self.message} ({self.path})"


class ArchiveError(SyncError):
    """The archive could not be opened, read, or written."""


class DetectError(SyncError):
    """Update detection aborted (unreadable root or walk failure)."""


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------


class PropagateError(SyncError):
    """Base class for propagation failures."""

    kind = "propagate"


class PropagateIoError(PropagateError):
    """An OS-level error while copying or deleting."""

    kind = "io"


class SourceVanishedError(PropagateError):
    """The master path disappeared between detection and propagation."""

    kind = "source_vanished"


class UnsupportedEntryError(PropagateError):
    """The entry kind cannot be propagated (symlink policy or special file)."""

    kind = "unsupported"


class PathModifiedError(PropagateError):
    """A path changed on disk after it was fingerprinted by the detector."""

    kind = "path_modified"


class CancelledError(PropagateError):
    """The host's propagation options vetoed a removal."""

    kind = "cancelled"
