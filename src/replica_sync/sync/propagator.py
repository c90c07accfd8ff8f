"""Propagation: apply the master's entry to every other replica.

``propagate`` verifies the master is still what the detector saw, then
for each target replica re-checks the target, applies the master's entry
(delete, atomic copy, directory creation or symlink recreation) and
advances that target's archive record.  The master's own record is
advanced last, all records sharing one generation.

Propagation is not atomic across replicas.  A failed target keeps its old
archive record, so the next detection pass sees a stale baseline and
proposes the update again.

Nothing is ever written below a symlinked directory of a target: such a
target fails with ``UnsupportedEntryError`` and the link is left alone.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from ..file_handler import (
    copy_file_atomic,
    ensure_directory,
    remove_entry,
    replicate_symlink,
    symlinked_ancestor,
)
from .archive import Archive, new_generation
from .errors import (
    CancelledError,
    PathModifiedError,
    PropagateError,
    PropagateIoError,
    SourceVanishedError,
    UnsupportedEntryError,
)
from .fingerprint import CHUNK_SIZE, EntryKind, Fingerprint, take_fingerprint
from .models import (
    Difference,
    PropagationResult,
    ReplicaOutcome,
    SymlinkPolicy,
)
from .progress import NullProgress, PropagateProgress

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class PropagationOptions(Protocol):
    """Host hooks consulted while propagating."""

    symlink_policy: SymlinkPolicy
    chunk_size: int

    def should_remove(self, path: Path) -> bool:
        """Return ``False`` to veto removing *path* from a target."""
        ...  # pragma: no cover

    def remove_file(self, path: Path) -> None:
        ...  # pragma: no cover

    def remove_tree(self, path: Path) -> None:
        ...  # pragma: no cover


class DefaultPropagationOptions:
    """Remove entries directly, never veto."""

    def __init__(
        self,
        symlink_policy: SymlinkPolicy = SymlinkPolicy.REPLICATE,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.symlink_policy = symlink_policy
        self.chunk_size = chunk_size

    def should_remove(self, path: Path) -> bool:
        return True

    def remove_file(self, path: Path) -> None:
        remove_entry(path)

    def remove_tree(self, path: Path) -> None:
        remove_entry(path)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def propagate(
    difference: Difference,
    master_index: int,
    archive: Archive,
    options: PropagationOptions | None = None,
    progress: PropagateProgress | None = None,
) -> PropagationResult:
    """Replace every other replica's entry at ``difference.path`` with the
    master's.

    Args:
        difference: Difference produced by the latest detection pass.
        master_index: Replica used as the source of truth.
        archive: Archive handle to advance.
        options: Removal hooks, symlink policy and copy chunk size.
        progress: Optional progress sink.

    Returns:
        Per-replica outcomes.  Target failures are recorded there; the
        remaining targets are still attempted.

    Raises:
        ValueError: If *master_index* is out of range.
        SourceVanishedError: If the master entry disappeared.
        PathModifiedError: If the master changed since detection.
        UnsupportedEntryError: If the master is a symlink under the
            ``error`` policy, or an unsupported entry kind.
        PropagateIoError: If the master cannot be read.
        ArchiveError: If an archive record cannot be written.
    """
    count = len(difference.roots)
    if not 0 <= master_index < count:
        raise ValueError(
            f"master index {master_index} out of range for {count} replicas"
        )
    options = options or DefaultPropagationOptions()
    progress = progress or NullProgress()
    path = difference.path

    master_fp = _verify_master(difference, master_index)
    if (
        master_fp.kind == EntryKind.SYMLINK
        and options.symlink_policy != SymlinkPolicy.REPLICATE
    ):
        raise UnsupportedEntryError(
            "symlink propagation disabled by policy",
            difference.absolute_path(master_index),
        )

    logger.info(
        "Propagating %s from replica %d (%s)",
        path,
        master_index,
        master_fp.describe(),
    )
    generation = new_generation()
    outcomes: list[ReplicaOutcome] = []

    for target in range(count):
        if target == master_index:
            continue
        try:
            action = _apply_to_target(
                difference, master_index, master_fp, target, options, progress
            )
        except PropagateError as exc:
            logger.error(
                "Failed to propagate %s to replica %d: %s", path, target, exc
            )
            outcomes.append(
                ReplicaOutcome(
                    replica_index=target,
                    action="none",
                    success=False,
                    error_kind=exc.kind,
                    error=str(exc),
                )
            )
            continue

        _record_target(
            difference, master_fp, target, archive, generation
        )
        progress.applied(path, target)
        outcomes.append(
            ReplicaOutcome(replica_index=target, action=action, success=True)
        )

    failed = any(not o.success for o in outcomes)
    if master_fp.exists:
        if _was_directory(difference, master_index) and (
            master_fp.kind != EntryKind.DIRECTORY
        ):
            archive.remove_tree(master_index, path)
        archive.record(master_index, path, master_fp, generation)
    elif not failed:
        archive.remove_tree(master_index, path)
    else:
        # Keep the master's old record: the next pass then sees the
        # deletion as a single-side change again.
        logger.debug(
            "Keeping archive record of %s in replica %d after failed deletion",
            path,
            master_index,
        )

    return PropagationResult(path=path, master=master_index, outcomes=outcomes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _verify_master(difference: Difference, master_index: int) -> Fingerprint:
    """Re-fingerprint the master and check it is what detection saw."""
    expected = difference.current[master_index]
    master_path = difference.absolute_path(master_index)
    try:
        if symlinked_ancestor(difference.roots[master_index], difference.path):
            fresh = Fingerprint.absent()
        else:
            fresh = take_fingerprint(
                master_path, difference.mode, archived=expected
            )
    except OSError as exc:
        raise PropagateIoError(
            f"cannot read master: {exc.strerror or exc}", master_path
        ) from exc

    if expected.exists and not fresh.exists:
        raise SourceVanishedError("master entry vanished", master_path)
    if not fresh.matches(expected, difference.mode):
        raise PathModifiedError(
            "master changed since detection", master_path
        )
    return fresh


def _was_directory(difference: Difference, index: int) -> bool:
    archived = difference.archived[index]
    return archived is not None and archived.kind == EntryKind.DIRECTORY


def _apply_to_target(
    difference: Difference,
    master_index: int,
    master_fp: Fingerprint,
    target: int,
    options: PropagationOptions,
    progress: PropagateProgress,
) -> str:
    """Make replica *target* hold the master's entry; returns the action."""
    path = difference.path
    target_path = difference.absolute_path(target)
    expected = difference.current[target]

    link = symlinked_ancestor(difference.roots[target], path)
    if link is not None:
        raise UnsupportedEntryError(
            f"target lies below symlink {link}", target_path
        )

    try:
        fresh = take_fingerprint(target_path, difference.mode, archived=expected)
    except OSError as exc:
        raise PropagateIoError(
            f"cannot read target: {exc.strerror or exc}", target_path
        ) from exc
    if not fresh.matches(expected, difference.mode):
        raise PathModifiedError("target changed since detection", target_path)

    if fresh.matches(master_fp, difference.mode):
        return "none"

    try:
        if not master_fp.exists:
            _remove(target_path, fresh, options)
            return "deleted"

        # A directory never replaces or is replaced in place.
        if fresh.exists and fresh.kind != master_fp.kind and (
            EntryKind.DIRECTORY in (fresh.kind, master_fp.kind)
        ):
            _remove(target_path, fresh, options)

        if master_fp.kind == EntryKind.FILE:
            copy_file_atomic(
                difference.absolute_path(master_index),
                target_path,
                chunk_size=options.chunk_size,
                on_chunk=lambda copied, total: progress.transferring(
                    path, target, copied, total
                ),
            )
            return "copied"

        if master_fp.kind == EntryKind.DIRECTORY:
            ensure_directory(target_path)
            return "created"

        if master_fp.kind == EntryKind.SYMLINK:
            replicate_symlink(master_fp.digest or "", target_path)
            return "linked"
    except OSError as exc:
        raise PropagateIoError(
            f"cannot update target: {exc.strerror or exc}", target_path
        ) from exc

    raise UnsupportedEntryError(
        f"cannot propagate entry of kind {master_fp.kind.value}", target_path
    )


def _remove(
    target_path: Path, fresh: Fingerprint, options: PropagationOptions
) -> None:
    if not fresh.exists:
        return
    if not options.should_remove(target_path):
        raise CancelledError("removal vetoed", target_path)
    if fresh.kind == EntryKind.DIRECTORY:
        options.remove_tree(target_path)
    else:
        options.remove_file(target_path)


def _record_target(
    difference: Difference,
    master_fp: Fingerprint,
    target: int,
    archive: Archive,
    generation: int,
) -> None:
    """Advance the archive record of a successfully updated target."""
    path = difference.path
    if not master_fp.exists:
        archive.remove_tree(target, path)
        return

    if _was_directory(difference, target) and (
        master_fp.kind != EntryKind.DIRECTORY
    ):
        archive.remove_tree(target, path)

    target_path = difference.absolute_path(target)
    try:
        fresh = take_fingerprint(target_path, difference.mode, archived=master_fp)
    except OSError as exc:
        logger.warning(
            "Cannot re-read %s after update, archiving master fingerprint: %s",
            target_path,
            exc,
        )
        fresh = master_fp
    archive.record(target, path, fresh, generation)
