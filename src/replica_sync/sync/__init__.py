"""Multi-replica file sync engine.

Public API for keeping N directory trees ("replicas") converged.

Architecture
------------
The pipeline uses **archive-based reconciliation**: each replica is
compared against its own archived fingerprint from the last successful
sync, never pairwise against every other replica.  A path changed in
exactly one replica is propagated from it; a path changed in several is a
conflict and is never guessed.

Modules:

- ``archive``     -- ``Archive``: per-replica persistent fingerprint store.
- ``fingerprint`` -- ``Fingerprint``, ``EntryKind``, ``ComparisonMode``.
- ``ignore``      -- ``IgnoreRules``: literal / regex / glob predicate.
- ``candidates``  -- ``FullWalk``, ``ExplicitCandidates``.
- ``detector``    -- ``find_updates``: classify every path.
- ``reconciler``  -- ``guess_operation``: propose a master.
- ``propagator``  -- ``propagate``: apply the master's entry.
- ``resolver``    -- Resolution policies (guess, newest-wins,
  prefer-replica, interactive).
- ``engine``      -- ``SyncEngine``: detect, resolve, propagate, report.
- ``reporter``    -- Human-readable and JSON report formatting.
- ``models``      -- Data contracts shared by all of the above.
- ``errors``      -- ``SyncError`` hierarchy.

Usage example
-------------
::

    from pathlib import Path
    from replica_sync.sync import (
        Archive, SyncConfig, find_updates, guess_operation, propagate,
        OperationKind,
    )

    config = SyncConfig(roots=(Path("/data/a"), Path("/data/b")))
    archive = Archive.open(Path("/data/.archive"))

    result = find_updates(archive, None, config)
    for difference in result.differences:
        operation = guess_operation(difference)
        if operation.kind == OperationKind.PROPAGATE_FROM_MASTER:
            propagate(difference, operation.master, archive)

Or, with the orchestrator::

    engine = SyncEngine(config, archive, profile_name="data")
    print(format_sync_report(engine.run(dry_run=True)))
"""

from .archive import Archive
from .candidates import CandidateSource, ExplicitCandidates, FullWalk
from .detector import find_updates
from .engine import SyncEngine, sync_all
from .errors import (
    ArchiveError,
    CancelledError,
    DetectError,
    PathModifiedError,
    PropagateError,
    PropagateIoError,
    SourceVanishedError,
    SyncError,
    UnsupportedEntryError,
)
from .fingerprint import ComparisonMode, EntryKind, Fingerprint
from .ignore import IgnoreRules
from .models import (
    DetectionResult,
    DetectionStatistics,
    Difference,
    Operation,
    OperationKind,
    PathError,
    PropagationResult,
    ReplicaOutcome,
    SymlinkPolicy,
    SyncAction,
    SyncConfig,
    SyncReport,
    SyncResult,
)
from .progress import DetectProgress, NullProgress, PropagateProgress, SyncProgress
from .propagator import DefaultPropagationOptions, propagate
from .reconciler import guess_operation
from .reporter import (
    format_conflict_diff,
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .resolver import create_policy

__all__ = [
    "Archive",
    "ArchiveError",
    "CancelledError",
    "CandidateSource",
    "ComparisonMode",
    "DefaultPropagationOptions",
    "DetectError",
    "DetectionResult",
    "DetectionStatistics",
    "Difference",
    "EntryKind",
    "ExplicitCandidates",
    "Fingerprint",
    "FullWalk",
    "IgnoreRules",
    "DetectProgress",
    "NullProgress",
    "Operation",
    "OperationKind",
    "PathError",
    "PathModifiedError",
    "PropagateError",
    "PropagateIoError",
    "PropagateProgress",
    "PropagationResult",
    "ReplicaOutcome",
    "SourceVanishedError",
    "SymlinkPolicy",
    "SyncAction",
    "SyncConfig",
    "SyncProgress",
    "SyncEngine",
    "SyncError",
    "SyncReport",
    "SyncResult",
    "UnsupportedEntryError",
    "create_policy",
    "find_updates",
    "format_conflict_diff",
    "format_dry_run_preview",
    "format_sync_report",
    "guess_operation",
    "propagate",
    "report_to_json",
    "sync_all",
]
