"""Sync profile configuration for host applications.

Reads profile settings from explicit arguments, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    Explicit args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    REPLICA_SYNC_ROOTS: Replica roots separated by ``os.pathsep``
    REPLICA_SYNC_ARCHIVE_DIR: Archive directory
    REPLICA_SYNC_COMPARISON: ``content`` or ``metadata``
    REPLICA_SYNC_MAX_WORKERS: Fingerprinting threads (1-64)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import (
    LoggingConfig,
    SyncProfileConfig,
    build_config,
    resolve_archive_dir,
    to_sync_config,
)
from .sync.models import SyncConfig

logger = logging.getLogger(__name__)


@dataclass
class Config:
    profile_name: str
    profile: SyncProfileConfig
    archive_dir: Path
    base_dir: Path
    logging: LoggingConfig

    def sync_config(self) -> SyncConfig:
        """Runtime ``SyncConfig`` for one pass of this profile."""
        return to_sync_config(self.profile, self.base_dir)


def resolve_profile(
    name: str,
    overrides: dict[str, Any] | None = None,
    yaml_fallbacks: dict[str, Any] | None = None,
) -> SyncProfileConfig:
    """Merge one profile's settings with unified precedence.

    Resolution order for each field (highest to lowest):
        explicit override > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        name: Profile name (used in error messages).
        overrides: Explicit values (``roots``, ``archive_dir``,
            ``comparison``, ``max_workers``, or any other profile field).
        yaml_fallbacks: The profile's section from the YAML config.

    Returns:
        Validated ``SyncProfileConfig``.

    Raises:
        ValueError: If no roots are configured or a value is invalid.
    """
    merged: dict[str, Any] = dict(yaml_fallbacks or {})

    env_roots = os.getenv("REPLICA_SYNC_ROOTS")
    if env_roots:
        merged["roots"] = [r for r in env_roots.split(os.pathsep) if r]

    env_archive = os.getenv("REPLICA_SYNC_ARCHIVE_DIR")
    if env_archive:
        merged["archive_dir"] = env_archive

    env_comparison = os.getenv("REPLICA_SYNC_COMPARISON")
    if env_comparison:
        merged["comparison"] = env_comparison.strip().lower()

    max_workers_raw = os.getenv("REPLICA_SYNC_MAX_WORKERS")
    if max_workers_raw is not None:
        try:
            merged["max_workers"] = int(max_workers_raw)
        except ValueError:
            raise ValueError(
                f"Invalid REPLICA_SYNC_MAX_WORKERS '{max_workers_raw}': must be a number between 1 and 64"
            ) from None

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    if not merged.get("roots"):
        raise ValueError(
            f"No replica roots for profile '{name}'. Set REPLICA_SYNC_ROOTS, "
            f"pass roots explicitly, or add 'sync.{name}.roots' to config.yml."
        )

    try:
        return SyncProfileConfig(**merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid sync profile '{name}': {exc}") from exc


def load_profile(
    name: str = "default",
    overrides: dict[str, Any] | None = None,
    base_dir: Path | None = None,
) -> Config:
    """Load a sync profile from every configuration source.

    Loads .env first (so ``${VAR}`` interpolation in YAML can use its
    values), then the hierarchical YAML config, then applies environment
    variables and *overrides*.

    Args:
        name: Profile name under the ``sync`` section.
        overrides: Explicit values, highest precedence.
        base_dir: Directory relative roots and archive paths are resolved
            against (default: the current working directory).

    Returns:
        Resolved ``Config``.

    Raises:
        ValueError: If the profile cannot be resolved or is invalid.
    """
    load_dotenv()

    unified = build_config(load_hierarchical_config())
    yaml_profile = unified.sync.get(name)
    yaml_fallbacks = (
        yaml_profile.model_dump(exclude_unset=True) if yaml_profile else None
    )
    if yaml_profile is None and discover_config_files():
        logger.debug("Profile '%s' not found in config files", name)

    profile = resolve_profile(name, overrides, yaml_fallbacks)
    base = base_dir or Path.cwd()
    archive_dir = resolve_archive_dir(profile, name, base)
    logger.info(
        "Loaded profile '%s': %d roots, archive %s",
        name,
        len(profile.roots),
        archive_dir,
    )
    return Config(
        profile_name=name,
        profile=profile,
        archive_dir=archive_dir,
        base_dir=base,
        logging=unified.logging,
    )
