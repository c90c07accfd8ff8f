"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``format_conflict_diff`` -- unified diff of two replicas for conflict
  review.
- ``report_to_json`` -- structured dict for JSON output.
"""

from __future__ import annotations

import difflib
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from ..file_handler import read_file_with_encoding
from .fingerprint import EntryKind
from .models import SyncAction

if TYPE_CHECKING:
    from .models import Difference, SyncReport

logger = logging.getLogger(__name__)

_PREVIEW_BYTES = 8192

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged paths are summarised by count only to avoid excessive output.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report for '{report.profile_name}'"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    stats = report.statistics
    lines.append(
        f"Checked {stats.paths_checked} paths: "
        f"{len(report.propagated)} propagated, "
        f"{len(report.conflicts)} conflicts, "
        f"{len(report.errors) + len(report.path_errors)} errors"
    )
    lines.append(
        f"Archive: {stats.archive_hits} hits, "
        f"{stats.archive_additions} additions"
    )
    if stats.symlinks_skipped:
        lines.append(f"Symlinks skipped: {stats.symlinks_skipped}")
    lines.append("")

    propagated_ok = [r for r in report.propagated if r.success]
    if propagated_ok:
        lines.append("Propagated:")
        for r in propagated_ok:
            targets = ", ".join(str(i) for i in r.updated_replicas) or "-"
            lines.append(f"  {r.path}: replica {r.master} -> {targets}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for r in report.conflicts:
            desc = r.error or "changed in several replicas"
            lines.append(f"  {r.path}: {desc}")
        lines.append("")

    if report.errors or report.path_errors:
        lines.append("Errors:")
        for r in report.errors:
            failed = ""
            if r.failed_replicas:
                failed = " (replicas " + ", ".join(
                    str(i) for i in r.failed_replicas
                ) + ")"
            lines.append(f"  {r.path}{failed}: {r.error}")
        for e in report.path_errors:
            where = (
                f" (replica {e.replica_index})"
                if e.replica_index is not None
                else ""
            )
            lines.append(f"  {e.path}{where}: {e.message}")
        lines.append("")

    unchanged = len(report.unchanged)
    if unchanged > 0:
        lines.append(f"Unchanged: {unchanged} paths")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by action type.

    Each proposed propagation is shown as ``path (from replica N)``.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Profile: {report.profile_name}")
    lines.append("")

    groups: dict[SyncAction, list[str]] = defaultdict(list)
    for r in report.results:
        if r.action == SyncAction.PROPAGATE:
            groups[r.action].append(f"{r.path} (from replica {r.master})")
        elif r.error and r.action != SyncAction.SKIP:
            groups[r.action].append(f"{r.path}: {r.error}")
        else:
            groups[r.action].append(r.path)

    display_order = [
        SyncAction.PROPAGATE,
        SyncAction.CONFLICT,
        SyncAction.ERROR,
    ]

    for action in display_order:
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper()}]")
        for item in groups[action]:
            lines.append(f"  {item}")
        lines.append("")

    skip_count = len(groups.get(SyncAction.SKIP, []))
    if skip_count > 0:
        lines.append(f"Unchanged: {skip_count} paths")
        lines.append("")

    if not any(a != SyncAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflict diff
# ------------------------------------------------------------------


def _side_text(difference: Difference, index: int) -> tuple[list[str], str]:
    """Return ``(lines, note)`` for one replica's side of a diff."""
    fp = difference.current[index]
    if fp.kind != EntryKind.FILE:
        return [], fp.describe()
    path = difference.absolute_path(index)
    try:
        with open(path, "rb") as fh:
            head = fh.read(_PREVIEW_BYTES)
        if b"\x00" in head:
            return [], "binary " + fp.describe()
        content, encoding = read_file_with_encoding(path)
    except OSError as exc:
        logger.warning("Cannot read %s for diff: %s", path, exc)
        return [], f"unreadable ({exc.strerror or exc})"
    return content.splitlines(keepends=True), encoding


def format_conflict_diff(
    difference: Difference,
    left: int | None = None,
    right: int | None = None,
) -> str:
    """Format a conflict between two replicas for interactive review.

    Shows a unified diff of the two replicas' text, decoded with
    charset-normalizer.  Directories, symlinks, absent and binary entries
    are described instead of diffed.

    Args:
        difference: The conflicted difference.
        left: First replica (default: first changed replica).
        right: Second replica (default: next changed replica).

    Returns:
        Multi-line formatted string with the diff.
    """
    changed = difference.changed_replicas() or list(
        range(len(difference.roots))
    )
    others = [i for i in range(len(difference.roots)) if i not in changed]
    order = changed + others
    if left is None:
        left = order[0]
    if right is None:
        right = next(i for i in order if i != left)

    lines: list[str] = []
    lines.append(
        f"Conflict: {difference.path} (replica {left} <-> replica {right})"
    )
    lines.append("")

    left_lines, left_note = _side_text(difference, left)
    right_lines, right_note = _side_text(difference, right)
    lefts_file = difference.current[left].kind == EntryKind.FILE
    rights_file = difference.current[right].kind == EntryKind.FILE

    if (
        lefts_file
        and rights_file
        and not left_note.startswith(("binary", "unreadable"))
        and not right_note.startswith(("binary", "unreadable"))
    ):
        diff = difflib.unified_diff(
            left_lines,
            right_lines,
            fromfile=f"replica {left}: {difference.path}",
            tofile=f"replica {right}: {difference.path}",
        )
        diff_text = "".join(diff)
        if diff_text:
            lines.append(diff_text.rstrip())
        else:
            lines.append("(no textual differences)")
    else:
        lines.append(f"  replica {left}: {left_note}")
        lines.append(f"  replica {right}: {right_note}")
    lines.append("")

    if difference.descendant_changes:
        holders = ", ".join(str(i) for i in sorted(difference.descendant_changes))
        lines.append(
            f"WARNING: replicas {holders} changed entries below this directory."
        )

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with profile info, counts, statistics and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "path": r.path,
            "action": r.action.value,
            "success": r.success,
        }
        if r.master is not None:
            entry["master"] = r.master
        if r.updated_replicas:
            entry["updated_replicas"] = r.updated_replicas
        if r.failed_replicas:
            entry["failed_replicas"] = r.failed_replicas
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "profile_name": report.profile_name,
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "propagated": len(report.propagated),
            "conflicts": len(report.conflicts),
            "errors": len(report.errors),
            "unchanged": len(report.unchanged),
        },
        "statistics": report.statistics.model_dump(),
        "path_errors": [e.model_dump() for e in report.path_errors],
        "results": results_list,
    }
