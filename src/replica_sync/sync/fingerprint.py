"""Fingerprints: comparable summaries of one filesystem entry.

A ``Fingerprint`` records the entry kind, modification time (ns), size,
and optionally a digest.  For regular files the digest is the SHA-256 of
the file bytes; for symlinks it is the link target text (links are never
followed).

Comparison is mode-dependent (see ``Fingerprint.matches``):

* ``ComparisonMode.METADATA`` -- files are equal when size and mtime are
  equal.  Fast, but sensitive to clock skew and coarse timestamps.
* ``ComparisonMode.CONTENT`` -- files are equal when size and digest are
  equal.  Modification times are ignored.

Directories compare by kind only: their mtime moves whenever a child is
added or removed, which is tracked through the children themselves.
"""

from __future__ import annotations

import hashlib
import logging
import os
import stat
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from .errors import UnsupportedEntryError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class EntryKind(str, Enum):
    """Kind of filesystem entry at a path."""

    ABSENT = "absent"
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


class ComparisonMode(str, Enum):
    """How two file fingerprints are compared."""

    METADATA = "metadata"
    CONTENT = "content"


class Fingerprint(BaseModel):
    """Comparable summary of a filesystem entry.

    Attributes:
        kind: Entry kind.
        mtime_ns: Modification time in nanoseconds (``None`` if absent).
        size: Size in bytes for files and symlinks.
        digest: SHA-256 hex digest for files (content mode only), link
            target text for symlinks.
    """

    kind: EntryKind
    mtime_ns: int | None = None
    size: int | None = None
    digest: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def absent(cls) -> Fingerprint:
        """Return the fingerprint of a missing path."""
        return cls(kind=EntryKind.ABSENT)

    @property
    def exists(self) -> bool:
        return self.kind != EntryKind.ABSENT

    def matches(self, other: Fingerprint, mode: ComparisonMode) -> bool:
        """Return ``True`` if *other* describes the same entry under *mode*."""
        if self.kind != other.kind:
            return False
        if self.kind in (EntryKind.ABSENT, EntryKind.DIRECTORY):
            return True
        if self.kind == EntryKind.SYMLINK:
            return self.digest == other.digest
        if self.size != other.size:
            return False
        if mode == ComparisonMode.CONTENT:
            # A missing digest on either side cannot prove equality.
            return (
                self.digest is not None
                and self.digest == other.digest
            )
        return self.mtime_ns == other.mtime_ns

    def describe(self) -> str:
        """Short human-readable form used in logs and reports."""
        if self.kind == EntryKind.FILE:
            text = f"file size={self.size}"
            if self.digest:
                text += f" sha256={self.digest[:8]}"
            return text
        if self.kind == EntryKind.SYMLINK:
            return f"symlink -> {self.digest}"
        return self.kind.value


# ---------------------------------------------------------------------------
# Taking fingerprints
# ---------------------------------------------------------------------------


def file_digest(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    """Return the SHA-256 hex digest of the file at *path*."""
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def take_fingerprint(
    path: Path,
    mode: ComparisonMode,
    archived: Fingerprint | None = None,
    rehash: bool = False,
) -> Fingerprint:
    """Fingerprint the entry at *path* without following symlinks.

    In content mode the digest of an archived fingerprint is reused when
    the file's size and mtime are unchanged, unless *rehash* is set.

    Args:
        path: Absolute path of the entry.
        mode: Comparison mode of the current pass.
        archived: Archived fingerprint for the same replica and path.
        rehash: Always recompute file digests in content mode.

    Returns:
        The current ``Fingerprint`` (``absent`` if nothing is there).

    Raises:
        OSError: If the entry exists but cannot be read.
        UnsupportedEntryError: For devices, FIFOs, sockets.
    """
    try:
        st = os.lstat(path)
    except (FileNotFoundError, NotADirectoryError):
        return Fingerprint.absent()

    if stat.S_ISLNK(st.st_mode):
        return Fingerprint(
            kind=EntryKind.SYMLINK,
            mtime_ns=st.st_mtime_ns,
            size=st.st_size,
            digest=os.readlink(path),
        )

    if stat.S_ISDIR(st.st_mode):
        return Fingerprint(
            kind=EntryKind.DIRECTORY, mtime_ns=st.st_mtime_ns
        )

    if not stat.S_ISREG(st.st_mode):
        raise UnsupportedEntryError(
            "unsupported file type (not a file, directory or symlink)",
            path,
        )

    digest = None
    if mode == ComparisonMode.CONTENT:
        if (
            not rehash
            and archived is not None
            and archived.kind == EntryKind.FILE
            and archived.digest is not None
            and archived.size == st.st_size
            and archived.mtime_ns == st.st_mtime_ns
        ):
            digest = archived.digest
        else:
            logger.debug("Hashing %s", path)
            digest = file_digest(path)

    return Fingerprint(
        kind=EntryKind.FILE,
        mtime_ns=st.st_mtime_ns,
        size=st.st_size,
        digest=digest,
    )
