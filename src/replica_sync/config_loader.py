"""
Hierarchical configuration loader for replica_sync.

Finds config files by convention, expands ``!include`` directives and
``${VAR}`` references, and merges the files so that a project file
overrides the global one section by section. Sync profiles commonly keep
their ignore rules in a shared file pulled in with ``!include``.

Usage:
    from replica_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterator

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "REPLICA_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".replica_sync"
GLOBAL_CONFIG = Path(".config") / "replica_sync" / "config.yml"

# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------

# ${NAME} or ${NAME:-fallback}
_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<fallback>.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` in *value*.

    An unset or empty variable expands to its fallback, or to nothing when
    there is none. A ``${`` that is never closed stays as written.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m["name"]) or (m["fallback"] or ""), value
    )


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(item) for key, item in obj.items()}
    if isinstance(obj, list):
        return list(map(_interpolate_recursive, obj))
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


# ---------------------------------------------------------------------------
# YAML with !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!include other.yml``.

    The tag is registered on this subclass only; ``yaml.safe_load`` keeps
    rejecting it. ``chain`` lists the files currently being loaded, outermost
    first, so an include cycle is reported instead of recursing forever.
    """

    chain: list[Path]

    def include(self, node: yaml.ScalarNode) -> Any:
        including = Path(self.name).resolve()
        target = Path(self.construct_scalar(node)).expanduser()
        if not target.is_absolute():
            target = including.parent / target
        target = target.resolve()

        if target in self.chain:
            cycle = " -> ".join(str(p) for p in [*self.chain, target])
            raise ValueError(f"Circular include detected: {cycle}")
        if not target.is_file():
            raise FileNotFoundError(
                f"Include file not found: {target} (referenced from {including})"
            )
        return _load_yaml_with_includes(target, chain=[*self.chain, target])


ConfigLoader.add_constructor("!include", ConfigLoader.include)


def _load_yaml_with_includes(path: Path, *, chain: list[Path] | None = None) -> Any:
    path = path.resolve()
    with path.open(encoding="utf-8") as stream:
        loader = ConfigLoader(stream)
        loader.chain = chain or [path]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _search_paths() -> Iterator[Path]:
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        yield Path(explicit).expanduser().resolve()
    project = Path.cwd() / PROJECT_CONFIG_DIR
    yield project / "config.yml"
    yield project / "config.yaml"
    yield Path.home() / GLOBAL_CONFIG


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first.

    Looked up in order: the file named by ``REPLICA_SYNC_CONFIG``, then
    ``./.replica_sync/config.yml`` and ``./.replica_sync/config.yaml``,
    then ``~/.config/replica_sync/config.yml``.
    """
    return [path for path in _search_paths() if path.exists()]


# ---------------------------------------------------------------------------
# Bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# replica-sync configuration
#
# Profile settings can also be overridden via environment variables:
#   REPLICA_SYNC_ROOTS (separated by the OS path separator),
#   REPLICA_SYNC_ARCHIVE_DIR, REPLICA_SYNC_COMPARISON,
#   REPLICA_SYNC_MAX_WORKERS
#
# sync:
#   docs:
#     roots:
#       - ~/docs
#       - /mnt/backup/docs
#     comparison: content        # or: metadata
#     symlinks: replicate        # or: skip, error
#     conflict_strategy: guess   # or: newest-wins, prefer-replica, interactive
#     max_workers: 4
#     ignore:
#       paths: [".git", "node_modules"]
#       patterns: ["\\\\.swp$"]
#       globs: ["*.tmp", ".DS_Store"]
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """The config file in effect, or where a new project one would go.

    Never creates anything; see ``ensure_config()``.
    """
    found = discover_config_files()
    return found[0] if found else Path.cwd() / PROJECT_CONFIG_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to write the starter file. Defaults to the project
            location from ``resolve_config_path()``.
    """
    found = discover_config_files()
    if found:
        logger.debug("Using existing config %s", found[0])
        return found[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one raw dict.

    Lower-precedence files are applied first and each later file replaces
    whole top-level sections (``sync``, ``logging``); sections are not
    deep-merged. ``${VAR}`` references are expanded once, after the merge.
    No files means ``{}``.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Reading config %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except (OSError, ValueError, yaml.YAMLError):
            logger.error("Cannot load config file %s", path)
            raise

        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring config file %s: top level is %s, not a mapping",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)

    if not merged:
        logger.debug("No sync configuration found, using defaults")
    return _interpolate_recursive(merged)
