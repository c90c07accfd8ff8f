"""Unified configuration schema for replica_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for sync profiles and logging, plus adapters that turn a profile
into the runtime ``SyncConfig`` used by the sync pipeline.

Usage:
    from replica_sync.config_schema import (
        UnifiedConfig, build_config, to_sync_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    sync_config = to_sync_config(unified.sync["docs"])
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .sync.fingerprint import ComparisonMode
from .sync.ignore import IgnoreRules
from .sync.models import SymlinkPolicy, SyncConfig

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_ROOT = Path(".replica_sync") / "archive"


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class IgnoreConfig(BaseModel):
    """Ignore rules of a sync profile.

    Attributes:
        paths: Literal relative paths; everything beneath them is ignored.
        patterns: Regular expressions searched in the relative path.
        globs: Shell-style globs matched against the path or its name.
    """

    paths: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    globs: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @field_validator("patterns")
    @classmethod
    def _check_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(
                    f"invalid ignore pattern {pattern!r}: {exc}"
                ) from exc
        return value


class SyncProfileConfig(BaseModel):
    """One named set of replicas kept in sync.

    All fields except ``roots`` have defaults, so a profile can be as
    small as a list of directories.
    """

    roots: list[str] = Field(
        min_length=2, description="Replica root directories, in order"
    )
    archive_dir: str | None = Field(
        default=None,
        description="Archive directory (default .replica_sync/archive/<profile>)",
    )
    ignore: IgnoreConfig = Field(default_factory=IgnoreConfig)
    comparison: ComparisonMode = Field(
        default=ComparisonMode.CONTENT,
        description="File comparison mode: content or metadata",
    )
    symlinks: SymlinkPolicy = Field(
        default=SymlinkPolicy.REPLICATE,
        description="Symlink policy: replicate, skip or error",
    )
    conflict_strategy: Literal[
        "guess", "newest-wins", "prefer-replica", "interactive"
    ] = Field(default="guess", description="Resolution policy")
    prefer_replica: int | None = Field(
        default=None,
        ge=0,
        description="Winning replica for the prefer-replica strategy",
    )
    max_workers: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Threads used to fingerprint paths (1-64)",
    )
    rehash: bool = Field(
        default=False,
        description="Re-hash files even when size and mtime are unchanged",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_strategy(self) -> SyncProfileConfig:
        if self.conflict_strategy == "prefer-replica":
            if self.prefer_replica is None:
                raise ValueError(
                    "conflict_strategy 'prefer-replica' requires prefer_replica"
                )
            if self.prefer_replica >= len(self.roots):
                raise ValueError(
                    f"prefer_replica {self.prefer_replica} out of range "
                    f"for {len(self.roots)} roots"
                )
        elif self.prefer_replica is not None:
            logger.warning(
                "prefer_replica is ignored with conflict_strategy '%s'",
                self.conflict_strategy,
            )
        return self


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    sync: dict[str, SyncProfileConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapters: SyncProfileConfig -> runtime objects
# ---------------------------------------------------------------------------


def to_sync_config(
    profile: SyncProfileConfig, base_dir: Path | None = None
) -> SyncConfig:
    """Convert a profile into the ``SyncConfig`` of one sync pass.

    Relative roots are resolved against *base_dir* (default: the current
    working directory).

    Args:
        profile: Validated sync profile.
        base_dir: Directory relative roots are resolved against.

    Returns:
        Immutable ``SyncConfig``.
    """
    base = base_dir or Path.cwd()
    roots = tuple(
        (base / Path(root).expanduser()).resolve() for root in profile.roots
    )
    return SyncConfig(
        roots=roots,
        ignore=IgnoreRules(
            paths=profile.ignore.paths,
            patterns=profile.ignore.patterns,
            globs=profile.ignore.globs,
        ),
        comparison=profile.comparison,
        symlinks=profile.symlinks,
        max_workers=profile.max_workers,
        rehash=profile.rehash,
    )


def resolve_archive_dir(
    profile: SyncProfileConfig,
    profile_name: str,
    base_dir: Path | None = None,
) -> Path:
    """Return the archive directory of a profile.

    Uses ``archive_dir`` when set, otherwise
    ``.replica_sync/archive/<profile_name>``; relative paths are resolved
    against *base_dir* (default: the current working directory).
    """
    base = base_dir or Path.cwd()
    if profile.archive_dir:
        directory = Path(profile.archive_dir).expanduser()
    else:
        directory = DEFAULT_ARCHIVE_ROOT / profile_name
    return (base / directory).resolve()
