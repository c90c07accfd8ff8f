"""Candidate sources: which paths the detector should look at.

A candidate source yields relative POSIX paths that *may* have changed.
The detector re-verifies every candidate, so false positives only cost
time.  Two sources are provided:

- ``FullWalk`` walks every replica root recursively.
- ``ExplicitCandidates`` takes a caller-supplied list (for example from a
  filesystem watcher) and optionally walks below each listed directory.

Both prune ignored directories and never follow symlinks.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, Protocol, Sequence

from ..file_handler import TEMP_PREFIX, normalize_relative_path
from .errors import DetectError
from .ignore import IgnorePredicate
from .progress import DetectProgress, NullProgress

logger = logging.getLogger(__name__)


class CandidateSource(Protocol):
    """Produces candidate paths; restartable and unordered."""

    def iter_paths(
        self,
        roots: Sequence[Path],
        ignore: IgnorePredicate,
        progress: DetectProgress | None = None,
    ) -> Iterable[str]:
        ...  # pragma: no cover

    def covers(self, path: str) -> bool:
        """Whether *path* is inside the scope of this source."""
        ...  # pragma: no cover


def _walk_below(
    root: Path,
    replica_index: int,
    start: str,
    ignore: IgnorePredicate,
    progress: DetectProgress,
) -> Iterator[str]:
    """Yield every non-ignored path below ``root/start`` (``""`` = root)."""
    top = root.joinpath(*start.split("/")) if start else root

    def _raise(exc: OSError) -> None:
        raise DetectError(
            f"cannot read directory in replica {replica_index}: "
            f"{exc.strerror or exc}",
            exc.filename or top,
        ) from exc

    for dirpath, dirnames, filenames in os.walk(
        top, topdown=True, onerror=_raise, followlinks=False
    ):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir
        progress.reading_directory(rel_dir, replica_index)

        kept_dirs = []
        for name in sorted(dirnames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if ignore.is_ignored(rel):
                logger.debug("Ignoring directory %s", rel)
                continue
            kept_dirs.append(name)
            yield rel
        # Prune in place so os.walk does not descend into ignored trees.
        dirnames[:] = kept_dirs

        for name in sorted(filenames):
            if name.startswith(TEMP_PREFIX):
                continue
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if not ignore.is_ignored(rel):
                yield rel


class FullWalk:
    """Walk every replica root recursively."""

    def iter_paths(
        self,
        roots: Sequence[Path],
        ignore: IgnorePredicate,
        progress: DetectProgress | None = None,
    ) -> Iterator[str]:
        progress = progress or NullProgress()
        seen: set[str] = set()
        for index, root in enumerate(roots):
            for rel in _walk_below(root, index, "", ignore, progress):
                if rel not in seen:
                    seen.add(rel)
                    yield rel

    def covers(self, path: str) -> bool:
        return True


class ExplicitCandidates:
    """Caller-supplied candidate paths.

    Args:
        paths: Relative paths (any separator).  ``"."`` means the root.
        recursive: Also walk below every candidate that is a directory
            in some replica.

    Raises:
        DetectError: If a path is absolute or escapes the replica root.
    """

    def __init__(self, paths: Iterable[str], recursive: bool = True) -> None:
        self.recursive = recursive
        normalised: list[str] = []
        for raw in paths:
            if raw.strip() in ("", ".", "./"):
                # Whole tree.
                normalised = [""]
                break
            try:
                normalised.append(normalize_relative_path(raw))
            except ValueError as exc:
                raise DetectError(f"invalid candidate path: {exc}", raw) from exc
        self.paths = tuple(dict.fromkeys(normalised))

    def iter_paths(
        self,
        roots: Sequence[Path],
        ignore: IgnorePredicate,
        progress: DetectProgress | None = None,
    ) -> Iterator[str]:
        progress = progress or NullProgress()
        seen: set[str] = set()
        for candidate in self.paths:
            if candidate and ignore.is_ignored(candidate):
                continue
            if candidate and candidate not in seen:
                seen.add(candidate)
                yield candidate
            if not self.recursive:
                continue
            for index, root in enumerate(roots):
                top = root.joinpath(*candidate.split("/")) if candidate else root
                if top.is_symlink() or not top.is_dir():
                    continue
                for rel in _walk_below(root, index, candidate, ignore, progress):
                    if rel not in seen:
                        seen.add(rel)
                        yield rel

    def covers(self, path: str) -> bool:
        for candidate in self.paths:
            if path == candidate:
                return True
            if self.recursive and (
                not candidate or path.startswith(candidate + "/")
            ):
                return True
        return False
