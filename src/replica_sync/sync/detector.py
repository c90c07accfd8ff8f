"""Update detection: compare every replica against its archived baseline.

``find_updates`` walks (or takes candidate paths for) each replica,
fingerprints every path, and classifies it relative to each replica's
own archived fingerprint:

1. **Unchanged** -- every replica matches its baseline and the baselines
   agree.  Counted as an archive hit.
2. **Agreement** -- all replicas currently hold the same entry but the
   archive is missing or behind (first sync, or the same edit made
   everywhere).  The archive is backfilled; counted as an addition.
3. **Single-side change** -- exactly one replica changed.
4. **Conflict** -- two or more replicas changed, or replicas disagree with
   no baseline to arbitrate.
5. **Stale baseline** -- nothing changed relative to the baselines, yet
   the baselines disagree (left behind by a partially failed propagation
   or a replica added to the configuration).

Cases 3-5 produce a ``Difference``.  A single-side change that removes a
directory while another replica changed something beneath it is upgraded
to a conflict.

Symlinks are never followed.  A path below a symlinked directory counts
as absent in that replica; under the ``skip`` policy it is left out
altogether, like the link itself.

Classification is sequential; only fingerprinting is optionally spread
over a thread pool, so the result is the same for any ``max_workers``.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Sequence

from ..file_handler import ancestors, symlinked_ancestor
from .archive import Archive, new_generation
from .candidates import CandidateSource, FullWalk
from .errors import DetectError, SyncError
from .fingerprint import EntryKind, Fingerprint, take_fingerprint
from .ignore import IgnorePredicate
from .models import (
    DetectionResult,
    DetectionStatistics,
    Difference,
    PathError,
    SymlinkPolicy,
    SyncConfig,
)
from .progress import DetectProgress, NullProgress

logger = logging.getLogger(__name__)


def find_updates(
    archive: Archive,
    candidate_source: CandidateSource | None,
    config: SyncConfig,
    progress: DetectProgress | None = None,
) -> DetectionResult:
    """Detect every path whose replicas disagree.

    Args:
        archive: Open archive handle.
        candidate_source: Where candidate paths come from; ``None`` means
            a full walk of every replica.
        config: Replica roots, ignore predicate and comparison mode.
        progress: Optional progress sink.

    Returns:
        ``DetectionResult`` with differences sorted by path (parents
        before children), statistics and per-path errors.

    Raises:
        DetectError: If a replica root is missing or unreadable, a
            candidate path is invalid, or a directory cannot be listed.
        ArchiveError: If a backfill cannot be written.
    """
    progress = progress or NullProgress()
    source = candidate_source or FullWalk()
    roots = config.roots
    _check_roots(roots)

    paths = _collect_paths(archive, source, config, progress)
    logger.debug("Checking %d candidate paths", len(paths))

    archived = {
        path: tuple(
            archive.entry_for(i, path) for i in range(len(roots))
        )
        for path in paths
    }
    generations = {
        path: tuple(
            archive.generation_for(i, path) for i in range(len(roots))
        )
        for path in paths
    }

    def _fingerprint(path: str) -> tuple[Fingerprint, ...] | PathError:
        return _fingerprint_all(path, roots, config, archived[path])

    if config.max_workers > 1 and len(paths) > 1:
        with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
            fingerprints = list(pool.map(_fingerprint, paths))
    else:
        fingerprints = [_fingerprint(path) for path in paths]

    stats = DetectionStatistics()
    errors: list[PathError] = []
    differences: list[Difference] = []

    for path, current in zip(paths, fingerprints):
        stats.paths_checked += 1
        progress.checking_path(path, stats.paths_checked)

        if isinstance(current, PathError):
            stats.errors += 1
            errors.append(current)
            logger.error(
                "Cannot fingerprint %s in replica %s: %s",
                path,
                current.replica_index,
                current.message,
            )
            continue

        if config.symlinks == SymlinkPolicy.SKIP:
            if any(fp.kind == EntryKind.SYMLINK for fp in current):
                stats.symlinks_skipped += 1
                logger.warning("Skipping symlink %s", path)
                continue
            if any(symlinked_ancestor(root, path) for root in roots):
                logger.debug("Skipping %s below a skipped symlink", path)
                continue

        difference = Difference(
            path=path,
            roots=roots,
            mode=config.comparison,
            current=current,
            archived=archived[path],
            generations=generations[path],
        )
        classified = _classify(difference, archive, stats)
        if classified is not None:
            differences.append(classified)

    differences = _mark_directory_removals(differences)
    stats.conflicts = sum(1 for d in differences if d.conflict)
    for d in differences:
        if d.conflict:
            logger.info(
                "Conflict at %s (changed in replicas %s)",
                d.path,
                d.changed_replicas() or sorted(d.descendant_changes),
            )

    logger.info(
        "Detection finished: %d checked, %d differences, %d conflicts, "
        "%d hits, %d additions, %d errors",
        stats.paths_checked,
        len(differences),
        stats.conflicts,
        stats.archive_hits,
        stats.archive_additions,
        stats.errors,
    )
    return DetectionResult(
        differences=differences, statistics=stats, errors=errors
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_roots(roots: Sequence[Path]) -> None:
    for index, root in enumerate(roots):
        if not root.exists():
            raise DetectError(f"replica {index} root does not exist", root)
        if not root.is_dir():
            raise DetectError(
                f"replica {index} root is not a directory", root
            )
        if not os.access(root, os.R_OK | os.X_OK):
            raise DetectError(f"replica {index} root is not readable", root)


def _is_excluded(path: str, ignore: IgnorePredicate) -> bool:
    """A path is excluded when it or any of its ancestors is ignored."""
    if ignore.is_ignored(path):
        return True
    return any(ignore.is_ignored(parent) for parent in ancestors(path))


def _collect_paths(
    archive: Archive,
    source: CandidateSource,
    config: SyncConfig,
    progress: DetectProgress,
) -> list[str]:
    ignore = config.ignore
    collected: set[str] = set()
    for path in source.iter_paths(config.roots, ignore, progress):
        if path not in collected and not _is_excluded(path, ignore):
            collected.add(path)

    # Archived paths are always re-checked so deletions are seen even
    # when no replica still has the entry.
    for index in range(len(config.roots)):
        for path in archive.paths(index):
            if (
                path not in collected
                and source.covers(path)
                and not _is_excluded(path, ignore)
            ):
                collected.add(path)

    return sorted(collected, key=lambda p: p.split("/"))


def _fingerprint_all(
    path: str,
    roots: Sequence[Path],
    config: SyncConfig,
    archived: tuple[Fingerprint | None, ...],
) -> tuple[Fingerprint, ...] | PathError:
    parts = path.split("/")
    current: list[Fingerprint] = []
    for index, root in enumerate(roots):
        if symlinked_ancestor(root, path) is not None:
            # Reached through a link: not part of this replica's tree.
            current.append(Fingerprint.absent())
            continue
        try:
            current.append(
                take_fingerprint(
                    root.joinpath(*parts),
                    config.comparison,
                    archived=archived[index],
                    rehash=config.rehash,
                )
            )
        except (OSError, SyncError) as exc:
            message = exc.strerror if isinstance(exc, OSError) else exc.message
            return PathError(
                path=path, replica_index=index, message=str(message or exc)
            )
    return tuple(current)


def _classify(
    difference: Difference,
    archive: Archive,
    stats: DetectionStatistics,
) -> Difference | None:
    """Classify one path; returns the difference to emit, if any."""
    path = difference.path
    mode = difference.mode
    current = difference.current
    first = current[0]
    agree = all(first.matches(fp, mode) for fp in current[1:])

    if agree:
        if all(
            archived is not None and fp.matches(archived, mode)
            for fp, archived in zip(current, difference.archived)
        ):
            stats.archive_hits += 1
            logger.debug("Archive hit %s", path)
            return None

        if not first.exists:
            # Gone everywhere: forget the leftover records.
            for index, archived in enumerate(difference.archived):
                if archived is not None:
                    archive.remove(index, path)
            logger.debug("Forgot %s (absent in every replica)", path)
            return None

        generation = new_generation()
        for index, fp in enumerate(current):
            archive.record(index, path, fp, generation)
        stats.archive_additions += 1
        logger.debug("Backfilled %s: %s", path, first.describe())
        return None

    changed = difference.changed_replicas()
    if len(changed) > 1:
        logger.debug("Conflict candidate %s (changed: %s)", path, changed)
        return difference.model_copy(update={"conflict": True})
    if len(changed) == 1:
        logger.debug("Single-side change %s in replica %d", path, changed[0])
    else:
        logger.debug("Stale baseline %s", path)
    return difference


def _mark_directory_removals(
    differences: list[Difference],
) -> list[Difference]:
    """Upgrade directory removals to conflicts when other replicas hold
    changes below the removed directory."""
    result: list[Difference] = []
    for index, difference in enumerate(differences):
        changed = difference.changed_replicas()
        if (
            difference.conflict
            or len(changed) != 1
            or not difference.removes_directory(changed[0])
        ):
            result.append(difference)
            continue

        remover = changed[0]
        prefix = difference.path + "/"
        holders: set[int] = set()
        # Sorted by components, so descendants follow contiguously.
        for child in differences[index + 1 :]:
            if not child.path.startswith(prefix):
                break
            holders.update(i for i in child.changed_replicas() if i != remover)

        if holders:
            logger.debug(
                "Directory %s removed in replica %d but changed below in %s",
                difference.path,
                remover,
                sorted(holders),
            )
            difference = difference.model_copy(
                update={
                    "conflict": True,
                    "descendant_changes": frozenset(holders),
                }
            )
        result.append(difference)
    return result
