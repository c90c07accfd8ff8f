"""File handler module: relative path validation, encoding-aware reads,
atomic copies and entry replacement inside replica trees.

All functions are synchronous and touch only the paths they are given.
Writes go through a temp file in the target directory followed by
``os.replace()``, so a reader never observes a half-written file.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Callable

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# Name prefix of in-flight temp files; the full walk never reports them.
TEMP_PREFIX = ".replica-sync-"

# =============================================================================
# Path Validation
# =============================================================================


def normalize_relative_path(path_str: str) -> str:
    """Normalise a caller-supplied relative path to POSIX form.

    Backslashes become slashes, empty and ``.`` components are dropped.

    Args:
        path_str: Path relative to a replica root.

    Returns:
        Normalised path such as ``"docs/readme.txt"``.

    Raises:
        ValueError: If the path is empty, absolute, or contains ``..``.
    """
    text = path_str.replace("\\", "/")
    if text.startswith("/") or PureWindowsPath(path_str).drive:
        raise ValueError(f"Path must be relative: {path_str}")
    parts = [p for p in PurePosixPath(text).parts if p not in ("", ".")]
    if ".." in parts:
        raise ValueError(f"Path escapes the replica root: {path_str}")
    if not parts:
        raise ValueError(f"Path is empty: {path_str!r}")
    return "/".join(parts)


def ancestors(path: str) -> list[str]:
    """Return the proper ancestors of a relative path, outermost first.

    ``ancestors("a/b/c")`` is ``["a", "a/b"]``.
    """
    parts = path.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


def symlinked_ancestor(root: Path, path: str) -> Path | None:
    """Return the first ancestor of *path* below *root* that is a symlink.

    Entries below such an ancestor live outside the replica tree and are
    neither read nor written through it.  The walk stops at the first
    ancestor that is missing or not a directory.
    """
    for parent in ancestors(path):
        candidate = root.joinpath(*parent.split("/"))
        try:
            st = os.lstat(candidate)
        except OSError:
            return None
        if stat.S_ISLNK(st.st_mode):
            return candidate
        if not stat.S_ISDIR(st.st_mode):
            return None
    return None


# =============================================================================
# File Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # Normalize ascii to utf-8 (ascii is a strict subset of utf-8)
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


# =============================================================================
# Entry Replacement
# =============================================================================


def remove_entry(path: Path) -> None:
    """Remove whatever is at *path*: a file, a symlink or a whole tree.

    A missing path is not an error.
    """
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)


def copy_file_atomic(
    source: Path,
    target: Path,
    chunk_size: int = 1024 * 1024,
    on_chunk: Callable[[int, int], None] | None = None,
) -> int:
    """Copy *source* over *target* through a temp file and ``os.replace``.

    Mode bits and timestamps are copied with ``shutil.copystat``.  Parent
    directories of *target* are created as needed.

    Args:
        source: Regular file to copy.
        target: Destination path (must not be a directory).
        chunk_size: Read size in bytes.
        on_chunk: Called with ``(copied, total)`` after every chunk.

    Returns:
        Number of bytes copied.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    total = source.stat().st_size
    fd, tmp_path = tempfile.mkstemp(
        dir=str(target.parent), prefix=TEMP_PREFIX, suffix=".tmp"
    )
    copied = 0
    try:
        with os.fdopen(fd, "wb") as dst, open(source, "rb") as src:
            while True:
                chunk = src.read(chunk_size)
                if not chunk:
                    break
                dst.write(chunk)
                copied += len(chunk)
                if on_chunk is not None:
                    on_chunk(copied, total)
            dst.flush()
            os.fsync(dst.fileno())
        shutil.copystat(source, tmp_path)
        os.replace(tmp_path, target)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    logger.debug("Copied %s -> %s (%d bytes)", source, target, copied)
    return copied


def ensure_directory(path: Path) -> bool:
    """Make sure *path* is a directory, replacing a file or symlink.

    Callers that honour a removal veto clear *path* themselves first.

    Returns:
        ``True`` if anything was created.
    """
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        return False
    path.mkdir(parents=True, exist_ok=True)
    return True


def replicate_symlink(link_target: str, path: Path) -> None:
    """Create (or replace) a symlink at *path* pointing to *link_target*.

    The link target text is used verbatim and never resolved.  An existing
    file or symlink at *path* is replaced atomically; a directory must be
    removed by the caller first.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.parent / f"{TEMP_PREFIX}{os.urandom(6).hex()}.tmp"
    os.symlink(link_target, tmp_path)
    try:
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
