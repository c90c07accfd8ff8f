"""Integration tests for the replica sync pipeline.

Exercise full detect -> decide -> propagate cycles on real directories,
verifying the interaction of all sync sub-systems: archive persistence,
candidate sources, reconciliation, propagation, reports, and profile
loading.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from replica_sync.config_schema import SyncProfileConfig
from replica_sync.sync import (
    Archive,
    ComparisonMode,
    ExplicitCandidates,
    OperationKind,
    SyncConfig,
    SyncEngine,
    find_updates,
    guess_operation,
    propagate,
)
from replica_sync.sync.reporter import format_sync_report, report_to_json
from replica_sync.sync.resolver import PreferReplicaPolicy

from helpers import write

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tree(root: Path) -> dict[str, str]:
    """Map every file below *root* to its content (symlinks as '-> target')."""
    result: dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            full = Path(dirpath) / name
            rel = full.relative_to(root).as_posix()
            if full.is_symlink():
                result[rel] = "-> " + os.readlink(full)
            elif full.is_dir():
                result[rel] = "<dir>"
            else:
                result[rel] = full.read_text()
    return result


def _converged(roots) -> bool:
    trees = [_tree(r) for r in roots]
    return all(t == trees[0] for t in trees[1:])


@pytest.fixture
def three(tmp_path):
    roots = []
    for i in range(3):
        root = tmp_path / f"replica{i}"
        root.mkdir()
        roots.append(root)
    config = SyncConfig(roots=tuple(roots))
    archive = Archive.open(tmp_path / "archive")
    return SyncEngine(config, archive, "three")


# ---------------------------------------------------------------------------
# Full cycles
# ---------------------------------------------------------------------------


class TestFullSyncCycle:
    """Detect, guess and propagate by hand, then through the engine."""

    def test_manual_cycle(self, tmp_path: Path) -> None:
        r0, r1 = tmp_path / "r0", tmp_path / "r1"
        r0.mkdir()
        r1.mkdir()
        config = SyncConfig(roots=(r0, r1))
        archive = Archive.open(tmp_path / "archive")
        write(r0, "a.txt", "hi")

        result = find_updates(archive, None, config)
        (diff,) = result.differences
        operation = guess_operation(diff)
        assert operation.kind == OperationKind.PROPAGATE_FROM_MASTER
        propagate(diff, operation.master, archive)

        assert (r1 / "a.txt").read_text() == "hi"
        reopened = Archive.open(tmp_path / "archive")
        again = find_updates(reopened, None, config)
        assert again.differences == []
        assert again.statistics.archive_hits == 1

    def test_mixed_changes_converge(self, three: SyncEngine) -> None:
        r0, r1, r2 = three.config.roots
        write(r0, "docs/readme.md", "v1")
        write(r1, "src/main.py", "print()")
        os.symlink("docs/readme.md", r2 / "README")
        three.run()
        assert _converged(three.config.roots)

        write(r1, "docs/readme.md", "v2 from r1")
        os.unlink(r2 / "src" / "main.py")
        (r0 / "empty").mkdir()
        report = three.run()

        assert report.errors == []
        assert _converged(three.config.roots)
        assert (r2 / "docs" / "readme.md").read_text() == "v2 from r1"
        assert not (r0 / "src" / "main.py").exists()
        assert (r1 / "empty").is_dir()
        assert three.run().results == []

    def test_conflict_survives_until_resolved(self, three: SyncEngine) -> None:
        r0, r1, r2 = three.config.roots
        for root in three.config.roots:
            write(root, "c.txt", "base")
        three.run()
        write(r0, "c.txt", "edit zero")
        write(r1, "c.txt", "edit one!")

        assert len(three.run().conflicts) == 1
        assert len(three.run().conflicts) == 1

        resolver = SyncEngine(
            three.config, three.archive, policy=PreferReplicaPolicy(0)
        )
        report = resolver.run()
        assert report.conflicts == []
        assert (r2 / "c.txt").read_text() == "edit zero"
        assert _converged(three.config.roots)

    def test_directory_removed_with_changes_below_is_conflict(
        self, three: SyncEngine
    ) -> None:
        r0, r1, _ = three.config.roots
        write(r0, "d/x.txt", "x")
        three.run()
        shutil.rmtree(r0 / "d")
        write(r1, "d/y.txt", "new below")

        report = three.run()
        conflicted = {r.path for r in report.conflicts}
        assert "d" in conflicted
        assert (r1 / "d" / "y.txt").exists()


class TestScopedAndMetadataRuns:
    def test_explicit_candidates_only_touch_listed_paths(
        self, three: SyncEngine
    ) -> None:
        r0, r1, _ = three.config.roots
        write(r0, "watched/a", "a")
        write(r0, "other/b", "b")

        three.run(candidates=ExplicitCandidates(["watched"]))

        assert (r1 / "watched" / "a").exists()
        assert not (r1 / "other").exists()

    def test_metadata_mode_detects_touch(self, tmp_path: Path) -> None:
        r0, r1 = tmp_path / "r0", tmp_path / "r1"
        r0.mkdir()
        r1.mkdir()
        config = SyncConfig(roots=(r0, r1), comparison=ComparisonMode.METADATA)
        engine = SyncEngine(config, Archive.open(tmp_path / "arc"))
        path = write(r0, "m.txt", "same")
        engine.run()

        os.utime(path, ns=(2_000_000_000_000_000_000,) * 2)
        report = engine.run()
        assert [r.path for r in report.propagated] == ["m.txt"]
        assert os.stat(r1 / "m.txt").st_mtime_ns == 2_000_000_000_000_000_000


class TestProfileIntegration:
    def test_profile_with_ignore_rules(self, tmp_path: Path) -> None:
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        write(tmp_path / "a", "keep.txt", "k")
        write(tmp_path / "a", "build/out.o", "o")
        write(tmp_path / "a", "notes.swp", "s")
        profile = SyncProfileConfig(
            roots=["a", "b"],
            ignore={"paths": ["build"], "globs": ["*.swp"]},
        )

        engine = SyncEngine.from_profile(profile, "proj", base_dir=tmp_path)
        report = engine.run()

        assert [r.path for r in report.propagated] == ["keep.txt"]
        assert _tree(tmp_path / "b") == {"keep.txt": "k"}
        text = format_sync_report(report)
        assert "keep.txt" in text
        data = report_to_json(report)
        assert data["counts"]["propagated"] == 1
