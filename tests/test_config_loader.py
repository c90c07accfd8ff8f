"""Tests for replica_sync.config_loader: hierarchical config loading."""

import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from replica_sync.config_loader import (
    CONFIG_ENV_VAR,
    _interpolate_recursive,
    _load_yaml_with_includes,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
    resolve_config_path,
)
from replica_sync.config_schema import build_config


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """CWD and HOME inside tmp_path, no explicit config path."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


def _project_config(root: Path, text: str) -> Path:
    path = root / ".replica_sync" / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


def _global_config(root: Path, text: str) -> Path:
    path = root / "home" / ".config" / "replica_sync" / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("BACKUP_MOUNT", "/mnt/backup")
        assert interpolate_env_vars("${BACKUP_MOUNT}/docs") == "/mnt/backup/docs"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset_or_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        monkeypatch.setenv("EMPTY_VAR", "")
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-/srv}") == "/srv"
        assert interpolate_env_vars("${EMPTY_VAR:-/srv}") == "/srv"

    def test_literal_dollar_brace_no_closing(self):
        assert interpolate_env_vars("${NO_CLOSE") == "${NO_CLOSE"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("LAPTOP", "/home/me/docs")
        data = {"docs": {"roots": ["${LAPTOP}", "/static"], "max_workers": 4}}
        assert _interpolate_recursive(data) == {
            "docs": {"roots": ["/home/me/docs", "/static"], "max_workers": 4}
        }


# -------------------------------------------------------------------------
# YAML !include support
# -------------------------------------------------------------------------


class TestIncludeDirective:
    """Tests for !include YAML loading via the ConfigLoader subclass."""

    def test_shared_ignore_rules(self, tmp_path):
        """Profiles can pull a shared ignore section from another file."""
        (tmp_path / "ignore.yml").write_text("globs: ['*.tmp']\npaths: [.git]\n")
        main = tmp_path / "config.yml"
        main.write_text(
            "sync:\n  docs:\n    roots: [a, b]\n    ignore: !include ignore.yml\n"
        )

        result = _load_yaml_with_includes(main)
        assert result["sync"]["docs"]["ignore"] == {
            "globs": ["*.tmp"],
            "paths": [".git"],
        }

    def test_include_absolute_path(self, tmp_path):
        shared = tmp_path / "shared" / "logging.yml"
        shared.parent.mkdir()
        shared.write_text("level: DEBUG\n")
        main = tmp_path / "config.yml"
        main.write_text(f"logging: !include {shared}\n")

        assert _load_yaml_with_includes(main) == {"logging": {"level": "DEBUG"}}

    def test_include_nonexistent_raises(self, tmp_path):
        main = tmp_path / "config.yml"
        main.write_text("data: !include missing.yml\n")
        with pytest.raises(FileNotFoundError, match="missing.yml"):
            _load_yaml_with_includes(main)

    def test_circular_include_raises(self, tmp_path):
        (tmp_path / "a.yml").write_text("x: !include b.yml\n")
        (tmp_path / "b.yml").write_text("y: !include a.yml\n")
        with pytest.raises(ValueError, match="Circular include"):
            _load_yaml_with_includes(tmp_path / "a.yml")

    def test_global_safe_loader_not_polluted(self, tmp_path):
        """!include is NOT registered on yaml.SafeLoader."""
        cfg = tmp_path / "test.yml"
        cfg.write_text("x: !include other.yml\n")
        with pytest.raises(yaml.constructor.ConstructorError):
            with open(cfg) as fh:
                yaml.safe_load(fh)


# -------------------------------------------------------------------------
# Convention-based file discovery
# -------------------------------------------------------------------------


class TestDiscoverConfigFiles:
    """Tests for discover_config_files() precedence and filtering."""

    def test_env_var_takes_highest_precedence(self, isolated, monkeypatch):
        custom = isolated / "custom.yml"
        custom.write_text("sync: {}\n")
        _project_config(isolated, "logging: {}\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(custom))

        result = discover_config_files()
        assert result[0] == custom.resolve()
        assert len(result) == 2

    def test_project_before_global(self, isolated):
        proj = _project_config(isolated, "a: 1\n")
        glob = _global_config(isolated, "b: 2\n")

        result = discover_config_files()
        assert result.index(proj) < result.index(glob)

    def test_yaml_extension_discovered(self, isolated):
        alt = isolated / ".replica_sync" / "config.yaml"
        alt.parent.mkdir()
        alt.write_text("a: 1\n")
        assert discover_config_files() == [alt]

    def test_nothing_found(self, isolated):
        assert discover_config_files() == []


# -------------------------------------------------------------------------
# Hierarchical merge
# -------------------------------------------------------------------------


class TestLoadHierarchicalConfig:
    """Tests for load_hierarchical_config() merge and interpolation."""

    def test_project_replaces_global_sections(self, isolated):
        _global_config(
            isolated,
            """\
            sync:
              home:
                roots: [/a, /b]
            logging:
              level: DEBUG
            """,
        )
        _project_config(
            isolated,
            """\
            sync:
              docs:
                roots: [x, y]
            """,
        )

        result = load_hierarchical_config()
        # Shallow merge: the project's sync section replaces the global one.
        assert list(result["sync"]) == ["docs"]
        assert result["logging"] == {"level": "DEBUG"}

    def test_env_var_interpolation_after_merge(self, isolated, monkeypatch):
        monkeypatch.setenv("BACKUP_ROOT", "/mnt/usb")
        _project_config(
            isolated,
            """\
            sync:
              docs:
                roots: [docs, "${BACKUP_ROOT}/docs"]
            """,
        )
        result = load_hierarchical_config()
        assert result["sync"]["docs"]["roots"] == ["docs", "/mnt/usb/docs"]

    def test_zero_config_returns_empty_dict(self, isolated):
        assert load_hierarchical_config() == {}

    def test_non_dict_root_skipped(self, isolated, monkeypatch):
        bad = isolated / "bad.yml"
        bad.write_text("- item1\n- item2\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(bad))
        assert load_hierarchical_config() == {}

    def test_invalid_yaml_raises(self, isolated):
        _project_config(isolated, "sync: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()


# -------------------------------------------------------------------------
# Config bootstrapping
# -------------------------------------------------------------------------


class TestResolveConfigPath:
    def test_returns_highest_precedence(self):
        project_path = Path("/project/.replica_sync/config.yml")
        global_path = Path("/home/user/.config/replica_sync/config.yml")
        with patch(
            "replica_sync.config_loader.discover_config_files",
            return_value=[project_path, global_path],
        ):
            assert resolve_config_path() == project_path

    def test_returns_default_when_no_files(self, isolated):
        assert resolve_config_path() == isolated / ".replica_sync" / "config.yml"


class TestEnsureConfig:
    """Tests for ensure_config(): bootstrapping config files."""

    def test_noop_when_exists(self, isolated):
        existing = _project_config(isolated, "sync: {}\n")
        assert ensure_config() == existing
        assert existing.read_text() == "sync: {}\n"

    def test_creates_starter_file(self, isolated):
        result = ensure_config()

        assert result == isolated / ".replica_sync" / "config.yml"
        content = result.read_text()
        assert "# replica-sync configuration" in content
        assert "# sync:" in content
        assert "REPLICA_SYNC_ROOTS" in content

    def test_explicit_target_with_parents(self, isolated):
        target = isolated / "a" / "b" / "my-config.yml"
        assert ensure_config(target=target) == target
        assert target.is_file()

    def test_starter_config_is_valid_when_uncommented(self, isolated):
        """The commented example becomes a valid config once uncommented."""
        content = ensure_config().read_text()
        example = content[content.index("# sync:"):]
        uncommented = "\n".join(
            line[2:] for line in example.splitlines() if line.startswith("# ")
        )

        unified = build_config(yaml.safe_load(uncommented))

        profile = unified.sync["docs"]
        assert profile.roots == ["~/docs", "/mnt/backup/docs"]
        assert profile.max_workers == 4
        assert ".git" in profile.ignore.paths
