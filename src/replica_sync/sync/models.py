"""Pydantic models for the replica sync pipeline.

Defines the data contracts shared by the detector, reconciler,
propagator and engine:

- ``SymlinkPolicy``: how symbolic links are treated.
- ``SyncConfig``: replica roots, ignore predicate, comparison mode.
- ``Difference``: one path whose replicas disagree.
- ``DetectionStatistics`` / ``PathError`` / ``DetectionResult``: output of
  ``find_updates``.
- ``OperationKind`` / ``Operation``: output of ``guess_operation``.
- ``ReplicaOutcome`` / ``PropagationResult``: output of ``propagate``.
- ``SyncAction`` / ``SyncResult`` / ``SyncReport``: engine reports.

Value models are frozen (immutable); statistics are mutable counters.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .fingerprint import ComparisonMode, EntryKind, Fingerprint
from .ignore import IgnoreRules


class SymlinkPolicy(str, Enum):
    """Treatment of symbolic links found in a replica."""

    REPLICATE = "replicate"
    SKIP = "skip"
    ERROR = "error"


class SyncConfig(BaseModel):
    """Runtime configuration of one sync pass.

    Replica identity is positional: index ``i`` always refers to
    ``roots[i]`` and to replica ``i`` in the archive.

    Attributes:
        roots: Replica root directories, in stable order.
        ignore: Ignore predicate (``IgnoreRules`` or any object with an
            ``is_ignored(path)`` method).
        comparison: File comparison mode.
        symlinks: Symlink policy.
        max_workers: Threads used to fingerprint paths (1 = sequential).
        rehash: Recompute digests even when size and mtime are unchanged.
    """

    roots: tuple[Path, ...] = Field(min_length=2)
    ignore: Any = Field(default_factory=IgnoreRules.nothing)
    comparison: ComparisonMode = ComparisonMode.CONTENT
    symlinks: SymlinkPolicy = SymlinkPolicy.REPLICATE
    max_workers: int = Field(default=1, ge=1, le=64)
    rehash: bool = False

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @field_validator("ignore")
    @classmethod
    def _check_ignore(cls, value: Any) -> Any:
        if not callable(getattr(value, "is_ignored", None)):
            raise ValueError("ignore must provide an is_ignored(path) method")
        return value

    @property
    def replica_count(self) -> int:
        return len(self.roots)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class Difference(BaseModel):
    """A path where current state disagrees with the archive or across
    replicas.

    Attributes:
        path: Relative POSIX path.
        roots: Replica roots of the pass that produced this difference.
        mode: Comparison mode used to classify it.
        current: Current fingerprint per replica.
        archived: Archived fingerprint per replica (``None`` = never seen).
        generations: Archive generation per replica (``None`` = never seen).
        conflict: ``True`` if more than one replica changed independently.
        descendant_changes: Replicas that changed something below this
            path (only filled when a directory is removed or replaced).
    """

    path: str
    roots: tuple[Path, ...]
    mode: ComparisonMode
    current: tuple[Fingerprint, ...]
    archived: tuple[Fingerprint | None, ...]
    generations: tuple[int | None, ...]
    conflict: bool = False
    descendant_changes: frozenset[int] = frozenset()

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_lengths(self) -> Difference:
        n = len(self.roots)
        if not (
            len(self.current) == len(self.archived) == len(self.generations) == n
        ):
            raise ValueError(
                "current, archived and generations must have one item per root"
            )
        return self

    def absolute_path(self, replica_index: int) -> Path:
        """Return the absolute path of this difference in one replica."""
        return self.roots[replica_index].joinpath(*self.path.split("/"))

    def is_changed(self, replica_index: int) -> bool:
        """Whether a replica changed relative to its own archived baseline.

        A replica with no archived fingerprint counts as changed only when
        something exists there now.
        """
        current = self.current[replica_index]
        archived = self.archived[replica_index]
        if archived is None:
            return current.exists
        return not current.matches(archived, self.mode)

    def changed_replicas(self) -> list[int]:
        """Indices of replicas that changed since their archived baseline."""
        return [i for i in range(len(self.current)) if self.is_changed(i)]

    def removes_directory(self, replica_index: int) -> bool:
        """Whether a replica deleted or replaced an archived directory."""
        archived = self.archived[replica_index]
        return (
            archived is not None
            and archived.kind == EntryKind.DIRECTORY
            and self.current[replica_index].kind != EntryKind.DIRECTORY
        )


class DetectionStatistics(BaseModel):
    """Counters accumulated during one detection pass."""

    paths_checked: int = 0
    archive_hits: int = 0
    archive_additions: int = 0
    conflicts: int = 0
    errors: int = 0
    symlinks_skipped: int = 0


class PathError(BaseModel):
    """A per-path failure collected instead of aborting the pass."""

    path: str
    replica_index: int | None = None
    message: str

    model_config = {"frozen": True}


class DetectionResult(BaseModel):
    """Output of ``find_updates``."""

    differences: list[Difference] = []
    statistics: DetectionStatistics = Field(
        default_factory=DetectionStatistics
    )
    errors: list[PathError] = []

    @property
    def conflicts(self) -> list[Difference]:
        return [d for d in self.differences if d.conflict]


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class OperationKind(str, Enum):
    """Tag of a reconciliation outcome."""

    PROPAGATE_FROM_MASTER = "propagate_from_master"
    NO_OP_AMBIGUOUS = "no_op_ambiguous"
    NO_OP_UNCHANGED = "no_op_unchanged"


class Operation(BaseModel):
    """Tagged reconciliation outcome; ``master`` is set only for
    ``PROPAGATE_FROM_MASTER``."""

    kind: OperationKind
    master: int | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_master(self) -> Operation:
        if (self.kind == OperationKind.PROPAGATE_FROM_MASTER) != (
            self.master is not None
        ):
            raise ValueError(
                "master is required for, and only for, PROPAGATE_FROM_MASTER"
            )
        return self

    @classmethod
    def propagate_from(cls, master: int) -> Operation:
        return cls(kind=OperationKind.PROPAGATE_FROM_MASTER, master=master)

    @classmethod
    def ambiguous(cls) -> Operation:
        return cls(kind=OperationKind.NO_OP_AMBIGUOUS)

    @classmethod
    def unchanged(cls) -> Operation:
        return cls(kind=OperationKind.NO_OP_UNCHANGED)


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------


class ReplicaOutcome(BaseModel):
    """Result of applying the master's entry to one target replica.

    Attributes:
        replica_index: Target replica.
        action: What was done (``copied``, ``deleted``, ``created``,
            ``linked``, ``none``).
        success: Whether the apply and the archive update succeeded.
        error_kind: ``PropagateError.kind`` on failure.
        error: Error message on failure.
    """

    replica_index: int
    action: str
    success: bool
    error_kind: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class PropagationResult(BaseModel):
    """Aggregated per-replica outcomes of one ``propagate`` call."""

    path: str
    master: int
    outcomes: list[ReplicaOutcome] = []

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> list[int]:
        return [o.replica_index for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[ReplicaOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def success(self) -> bool:
        return not self.failed


# ---------------------------------------------------------------------------
# Engine reports
# ---------------------------------------------------------------------------


class SyncAction(str, Enum):
    """What the engine did with one difference."""

    PROPAGATE = "propagate"
    CONFLICT = "conflict"
    SKIP = "skip"
    ERROR = "error"


class SyncResult(BaseModel):
    """Result of handling one difference in an engine run.

    Attributes:
        path: Relative path.
        action: Action taken (or proposed in a dry run).
        master: Replica used as source of truth, if any.
        updated_replicas: Targets that received the master's entry.
        failed_replicas: Targets where the apply failed.
        success: ``False`` if anything failed.
        error: Error message, or a note for skipped/conflicted paths.
    """

    path: str
    action: SyncAction
    master: int | None = None
    updated_replicas: list[int] = []
    failed_replicas: list[int] = []
    success: bool = True
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for a full engine run.

    Attributes:
        profile_name: Name of the sync profile used.
        dry_run: Whether changes were only proposed.
        results: Per-difference results.
        statistics: Detection statistics of the pass.
        path_errors: Per-path detection errors.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    profile_name: str
    dry_run: bool = False
    results: list[SyncResult] = []
    statistics: DetectionStatistics = Field(
        default_factory=DetectionStatistics
    )
    path_errors: list[PathError] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def propagated(self) -> list[SyncResult]:
        """Results where the master's entry was (or would be) propagated."""
        return [
            r for r in self.results if r.action == SyncAction.PROPAGATE
        ]

    @property
    def conflicts(self) -> list[SyncResult]:
        """Results left unresolved because no master could be chosen."""
        return [
            r for r in self.results if r.action == SyncAction.CONFLICT
        ]

    @property
    def unchanged(self) -> list[SyncResult]:
        """Results left as they are (no master needed or policy skipped)."""
        return [r for r in self.results if r.action == SyncAction.SKIP]

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Sync report for profile '{self.profile_name}'"
            + (" (dry run)" if self.dry_run else ""),
            f"  Propagated:     {len(self.propagated)}",
            f"  Conflicts:      {len(self.conflicts)}",
            f"  Unchanged:      {len(self.unchanged)}",
            f"  Errors:         {len(self.errors) + len(self.path_errors)}",
            f"  Archive hits:   {self.statistics.archive_hits}",
            f"  Total:          {len(self.results)}",
        ]
        return "\n".join(lines)
