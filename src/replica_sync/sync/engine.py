"""Sync engine that orchestrates one full pass over a set of replicas.

The ``SyncEngine`` ties together detector, resolution policy and
propagator into a complete sync run.  It:

1. Detects every difference between the replicas (``find_updates``).
2. Asks the resolution policy for an operation per difference.
3. Propagates the master's entry for every ``PROPAGATE_FROM_MASTER``.
4. Builds and returns a ``SyncReport``.

Error handling is per-difference: a failure on one path does not abort
the run.  Only detection-level failures (unreadable replica root, corrupt
archive) propagate to the caller.

A path below a non-directory entry that was not resolved in this pass (a
conflicting symlink or file in place of a directory) is skipped until the
parent is settled.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from ..core.async_utils import gather_limited, run_sync_limited
from .archive import Archive
from .candidates import CandidateSource
from .detector import find_updates
from .errors import PropagateError
from .fingerprint import EntryKind
from .models import (
    Difference,
    OperationKind,
    SyncAction,
    SyncConfig,
    SyncReport,
    SyncResult,
)
from .progress import SyncProgress
from .propagator import (
    DefaultPropagationOptions,
    PropagationOptions,
    propagate,
)
from .resolver import GuessPolicy, ResolutionPolicy, create_policy

if TYPE_CHECKING:
    from ..config_schema import SyncProfileConfig

logger = logging.getLogger(__name__)


class SyncEngine:
    """Orchestrate a full sync pass for one set of replicas.

    Args:
        config: Runtime configuration of the pass.
        archive: Open archive handle for these replicas.
        profile_name: Name used in reports.
        policy: Resolution policy (default: ``GuessPolicy``).
        options: Propagation options (default: direct removal with the
            configured symlink policy).
    """

    def __init__(
        self,
        config: SyncConfig,
        archive: Archive,
        profile_name: str = "default",
        policy: ResolutionPolicy | None = None,
        options: PropagationOptions | None = None,
    ) -> None:
        self.config = config
        self.archive = archive
        self.profile_name = profile_name
        self.policy = policy or GuessPolicy()
        self.options = options or DefaultPropagationOptions(
            symlink_policy=config.symlinks
        )

    @classmethod
    def from_profile(
        cls,
        profile: SyncProfileConfig,
        profile_name: str,
        base_dir: Path | None = None,
    ) -> SyncEngine:
        """Build an engine (and open its archive) from a config profile."""
        from ..config_schema import resolve_archive_dir, to_sync_config

        config = to_sync_config(profile, base_dir)
        archive = Archive.open(
            resolve_archive_dir(profile, profile_name, base_dir)
        )
        policy = create_policy(
            profile.conflict_strategy, profile.prefer_replica
        )
        return cls(config, archive, profile_name, policy)

    # ------------------------------------------------------------------
    # Main entry points
    # ------------------------------------------------------------------

    def run(
        self,
        dry_run: bool = False,
        candidates: CandidateSource | None = None,
        progress: SyncProgress | None = None,
    ) -> SyncReport:
        """Execute a full sync pass.

        Args:
            dry_run: If ``True``, decide operations but do not propagate.
            candidates: Candidate source (default: full walk).
            progress: Optional sink for detection and propagation progress.

        Returns:
            A ``SyncReport`` summarising what was (or would be) done.

        Raises:
            DetectError: If a replica root cannot be read.
            ArchiveError: If the archive cannot be read or written.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        detection = find_updates(self.archive, candidates, self.config, progress)

        results: list[SyncResult] = []
        # Children of these were replaced along with their parent.
        replaced: list[str] = []
        # Non-directory entries left in place; nothing below them is touched.
        held: list[str] = []
        for difference in detection.differences:
            parent = _enclosing(difference.path, replaced)
            if parent is not None:
                logger.debug(
                    "Skipping %s: parent already replaced", difference.path
                )
                results.append(
                    SyncResult(
                        path=difference.path,
                        action=SyncAction.SKIP,
                        error="covered by parent propagation",
                    )
                )
                continue

            parent = _enclosing(difference.path, held)
            if parent is not None:
                logger.info(
                    "Skipping %s: parent %s is unresolved", difference.path, parent
                )
                results.append(
                    SyncResult(
                        path=difference.path,
                        action=SyncAction.SKIP,
                        error=f"parent {parent} left unresolved",
                    )
                )
                continue

            try:
                result = self._sync_difference(difference, dry_run, progress)
            except (PropagateError, ValueError) as exc:
                logger.error("Error syncing %s: %s", difference.path, exc)
                result = SyncResult(
                    path=difference.path,
                    action=SyncAction.ERROR,
                    success=False,
                    error=str(exc),
                )
            results.append(result)

            resolved = result.action == SyncAction.PROPAGATE and result.success
            if (
                resolved
                and not dry_run
                and result.master is not None
                and difference.current[result.master].kind
                != EntryKind.DIRECTORY
            ):
                replaced.append(difference.path)
            elif not resolved and any(
                fp.kind not in (EntryKind.DIRECTORY, EntryKind.ABSENT)
                for fp in difference.current
            ):
                held.append(difference.path)

        completed_at = datetime.now(timezone.utc).isoformat()
        report = SyncReport(
            profile_name=self.profile_name,
            dry_run=dry_run,
            results=results,
            statistics=detection.statistics,
            path_errors=detection.errors,
            started_at=started_at,
            completed_at=completed_at,
        )
        logger.info(
            "Sync of '%s' finished: %d propagated, %d conflicts, %d errors",
            self.profile_name,
            len(report.propagated),
            len(report.conflicts),
            len(report.errors),
        )
        return report

    async def run_async(
        self,
        dry_run: bool = False,
        candidates: CandidateSource | None = None,
    ) -> SyncReport:
        """Run ``run()`` in a worker thread, bounded by the shared semaphore."""
        return await run_sync_limited(self.run, dry_run, candidates)

    # ------------------------------------------------------------------
    # Per-difference sync
    # ------------------------------------------------------------------

    def _sync_difference(
        self,
        difference: Difference,
        dry_run: bool,
        progress: SyncProgress | None,
    ) -> SyncResult:
        operation = self.policy.decide(difference)

        if operation.kind == OperationKind.NO_OP_UNCHANGED:
            return SyncResult(path=difference.path, action=SyncAction.SKIP)

        if operation.kind == OperationKind.NO_OP_AMBIGUOUS:
            return SyncResult(
                path=difference.path,
                action=SyncAction.CONFLICT,
                error="conflict left unresolved",
            )

        master = operation.master
        assert master is not None
        if dry_run:
            return SyncResult(
                path=difference.path,
                action=SyncAction.PROPAGATE,
                master=master,
            )

        propagation = propagate(
            difference,
            master,
            self.archive,
            self.options,
            progress,
        )
        failed = propagation.failed
        return SyncResult(
            path=difference.path,
            action=SyncAction.PROPAGATE,
            master=master,
            updated_replicas=propagation.succeeded,
            failed_replicas=[o.replica_index for o in failed],
            success=not failed,
            error="; ".join(o.error or o.error_kind or "" for o in failed)
            or None,
        )


def _enclosing(path: str, parents: list[str]) -> str | None:
    """Return the entry of *parents* that *path* lies below, if any."""
    for parent in parents:
        if path.startswith(parent + "/"):
            return parent
    return None


async def sync_all(
    engines: list[SyncEngine], dry_run: bool = False
) -> list[SyncReport]:
    """Run several engines concurrently (one per profile).

    Concurrency is bounded by the semaphore set up with
    ``init_semaphore()``.  Engines must not share an archive directory.

    Returns:
        Reports in the same order as *engines*.
    """
    return await gather_limited(
        [engine.run_async(dry_run=dry_run) for engine in engines]
    )
