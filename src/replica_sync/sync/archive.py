"""Archive persistence layer.

The archive remembers, per replica and per relative path, the fingerprint
the path had the last time a sync succeeded for it.  It is the only state
carried from one sync pass to the next.

On-disk layout::

    <archive_dir>/
        FORMAT                      {"version": 1}
        replica-0/
            3f/3fa1...e9.json       one record per path
        replica-1/
            ...

Key design choices:

* **One file per record** -- each record is an independent unit of
  persistence, so a crash while updating one path never corrupts another.
* **Atomic writes** -- records are written to a temp file in the same
  directory, fsynced, then moved into place with ``os.replace()``.
* **Per-replica isolation** -- each replica has its own directory; loading
  replica *i* never reads replica *j*'s records.
* **Fail loudly** -- a corrupt record makes ``Archive.open()`` raise
  ``ArchiveError`` naming the file instead of silently dropping data.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, ValidationError

from .errors import ArchiveError
from .fingerprint import Fingerprint

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
_FORMAT_FILE = "FORMAT"
_REPLICA_PREFIX = "replica-"


class ArchiveRecord(BaseModel):
    """One persisted record: the archived fingerprint of a path.

    Attributes:
        path: Relative POSIX path.
        fingerprint: Fingerprint at the time of the last successful sync.
        generation: ``time.time_ns()`` of the pass that wrote the record.
    """

    path: str
    fingerprint: Fingerprint
    generation: int

    model_config = {"frozen": True}


def path_key(path: str) -> str:
    """Return the storage key (SHA-256 hex) of a relative path."""
    return hashlib.sha256(path.encode("utf-8")).hexdigest()


def new_generation() -> int:
    """Return a fresh generation number."""
    return time.time_ns()


class Archive:
    """Handle on an archive directory.

    Use ``Archive.open()`` rather than the constructor.  The handle is not
    thread-safe and must not be shared by concurrent passes.

    Args:
        directory: The archive directory.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._records: dict[int, dict[str, ArchiveRecord]] = {}

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, directory: Path | str) -> Archive:
        """Open (creating if needed) the archive at *directory*.

        Every replica record set already on disk is loaded and validated.

        Raises:
            ArchiveError: If the directory cannot be created or read, the
                format marker is unknown, or a record is corrupt.
        """
        archive = cls(Path(directory))
        archive._ensure_format()
        for index in archive._replica_indices_on_disk():
            archive._load_replica(index)
        logger.debug(
            "Opened archive %s (%d replica record sets)",
            archive.directory,
            len(archive._records),
        )
        return archive

    def _ensure_format(self) -> None:
        marker = self.directory / _FORMAT_FILE
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            if not marker.exists():
                self._atomic_write(marker, {"version": FORMAT_VERSION})
                return
            with open(marker, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise ArchiveError(
                f"cannot initialise archive: {exc}", self.directory
            ) from exc

        version = data.get("version") if isinstance(data, dict) else None
        if version != FORMAT_VERSION:
            raise ArchiveError(
                f"unsupported archive format version {version!r} "
                f"(expected {FORMAT_VERSION})",
                marker,
            )

    def _replica_indices_on_disk(self) -> list[int]:
        indices: list[int] = []
        try:
            children = list(self.directory.iterdir())
        except OSError as exc:
            raise ArchiveError(
                f"cannot list archive directory: {exc}", self.directory
            ) from exc
        for child in children:
            name = child.name
            if child.is_dir() and name.startswith(_REPLICA_PREFIX):
                suffix = name[len(_REPLICA_PREFIX) :]
                if suffix.isdigit():
                    indices.append(int(suffix))
        return sorted(indices)

    def _load_replica(self, replica_index: int) -> dict[str, ArchiveRecord]:
        """Load and validate every record of one replica."""
        records: dict[str, ArchiveRecord] = {}
        replica_dir = self._replica_dir(replica_index)
        if replica_dir.is_dir():
            try:
                files = sorted(replica_dir.rglob("*"))
            except OSError as exc:
                raise ArchiveError(
                    f"cannot read replica {replica_index} records: {exc}",
                    replica_dir,
                ) from exc
            for file in files:
                if file.suffix == ".tmp":
                    # Left behind by an interrupted write; never renamed
                    # into place, so it holds no committed data.
                    logger.debug("Removing stale temp file %s", file)
                    file.unlink(missing_ok=True)
                    continue
                if file.suffix != ".json":
                    continue
                record = self._read_record(file)
                records[record.path] = record
        self._records[replica_index] = records
        return records

    @staticmethod
    def _read_record(file: Path) -> ArchiveRecord:
        try:
            record = ArchiveRecord.model_validate_json(file.read_bytes())
        except OSError as exc:
            raise ArchiveError(f"cannot read record: {exc}", file) from exc
        except ValidationError as exc:
            raise ArchiveError(
                f"corrupt archive record: {exc.error_count()} "
                f"validation error(s)",
                file,
            ) from exc
        if file.stem != path_key(record.path):
            raise ArchiveError(
                f"record for '{record.path}' stored under the wrong key",
                file,
            )
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _replica(self, replica_index: int) -> dict[str, ArchiveRecord]:
        if replica_index < 0:
            raise ValueError(f"invalid replica index {replica_index}")
        records = self._records.get(replica_index)
        if records is None:
            records = self._load_replica(replica_index)
        return records

    def entry_for(self, replica_index: int, path: str) -> Fingerprint | None:
        """Return the archived fingerprint, or ``None`` if never seen."""
        record = self._replica(replica_index).get(path)
        return record.fingerprint if record else None

    def generation_for(self, replica_index: int, path: str) -> int | None:
        """Return the generation of the archived record, if any."""
        record = self._replica(replica_index).get(path)
        return record.generation if record else None

    def paths(self, replica_index: int) -> Iterator[str]:
        """Iterate over the archived paths of one replica."""
        return iter(list(self._replica(replica_index)))

    def replica_indices(self) -> list[int]:
        """Indices of the replicas that have (or had) records."""
        return sorted(self._records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record(
        self,
        replica_index: int,
        path: str,
        fingerprint: Fingerprint,
        generation: int | None = None,
    ) -> None:
        """Upsert the archived fingerprint of *path* in one replica.

        Recording an absent fingerprint forgets the path instead.

        Raises:
            ArchiveError: If the record cannot be written.
        """
        if not fingerprint.exists:
            self.remove(replica_index, path)
            return

        records = self._replica(replica_index)
        record = ArchiveRecord(
            path=path,
            fingerprint=fingerprint,
            generation=generation if generation is not None else new_generation(),
        )
        file = self._record_file(replica_index, path)
        try:
            file.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write(file, record.model_dump(mode="json"))
        except OSError as exc:
            raise ArchiveError(f"cannot write record: {exc}", file) from exc
        records[path] = record
        logger.debug(
            "Archived replica %d %s: %s",
            replica_index,
            path,
            fingerprint.describe(),
        )

    def remove(self, replica_index: int, path: str) -> None:
        """Forget *path* in one replica.  No-op if not present."""
        records = self._replica(replica_index)
        file = self._record_file(replica_index, path)
        try:
            file.unlink(missing_ok=True)
        except OSError as exc:
            raise ArchiveError(f"cannot remove record: {exc}", file) from exc
        records.pop(path, None)

    def remove_tree(self, replica_index: int, path: str) -> int:
        """Forget *path* and everything below it in one replica.

        Returns:
            Number of records removed.
        """
        prefix = path + "/"
        doomed = [
            p
            for p in self._replica(replica_index)
            if p == path or p.startswith(prefix)
        ]
        for p in doomed:
            self.remove(replica_index, p)
        return len(doomed)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _replica_dir(self, replica_index: int) -> Path:
        return self.directory / f"{_REPLICA_PREFIX}{replica_index}"

    def _record_file(self, replica_index: int, path: str) -> Path:
        key = path_key(path)
        return self._replica_dir(replica_index) / key[:2] / f"{key}.json"

    @staticmethod
    def _atomic_write(target: Path, data: dict) -> None:
        """Write *data* as JSON to *target* via temp file + ``os.replace``."""
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
