"""Tests for logger.py: setup_logging() and JsonFormatter.

Covers:
- CLI mode logging (stderr handler, optional file handler)
- Service mode logging (file handler only)
- Level precedence: debug flag > LOG_LEVEL > config level > mode default
- JSON formatter output
- Third-party logger silencing

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

from replica_sync.logger import DEFAULT_SERVICE_LOG, JsonFormatter, setup_logging


def _close(handlers):
    for handler in handlers:
        handler.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("replica_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic, clean_env):
        """CLI mode passes a single StreamHandler(stderr) to basicConfig."""
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr

    @patch("replica_sync.logger.logging.basicConfig")
    def test_cli_mode_with_log_file(self, mock_basic, tmp_path, clean_env):
        """CLI mode with log_file adds a FileHandler that names loggers."""
        log_file = tmp_path / "cli.log"
        setup_logging(mode="cli", log_file=str(log_file))

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        assert "%(name)s" in file_handlers[0].formatter._fmt
        _close(file_handlers)

    @patch("replica_sync.logger.logging.basicConfig")
    def test_service_mode_logs_to_file_only(self, mock_basic, tmp_path, clean_env):
        log_file = tmp_path / "service.log"
        setup_logging(mode="service", log_file=str(log_file))

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == str(log_file)
        _close(handlers)

    @patch("replica_sync.logger.logging.basicConfig")
    def test_service_mode_log_file_from_env(self, mock_basic, tmp_path, clean_env):
        clean_env.setenv("LOG_FILE", str(tmp_path / "env.log"))
        setup_logging(mode="service")

        handlers = mock_basic.call_args[1]["handlers"]
        assert handlers[0].baseFilename == str(tmp_path / "env.log")
        _close(handlers)

    @patch("replica_sync.logger.logging.FileHandler")
    @patch("replica_sync.logger.logging.basicConfig")
    def test_service_mode_default_log_file(self, mock_basic, mock_handler, clean_env):
        mock_handler.return_value = MagicMock()
        setup_logging(mode="service")
        mock_handler.assert_called_once_with(DEFAULT_SERVICE_LOG, mode="a")

    @patch("replica_sync.logger.logging.basicConfig")
    def test_default_levels_per_mode(self, mock_basic, tmp_path, clean_env):
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

        setup_logging(mode="service", log_file=str(tmp_path / "s.log"))
        assert mock_basic.call_args[1]["level"] == logging.WARNING
        _close(mock_basic.call_args[1]["handlers"])

    @patch("replica_sync.logger.logging.basicConfig")
    def test_config_level_used(self, mock_basic, clean_env):
        setup_logging(mode="cli", level="debug")
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("replica_sync.logger.logging.basicConfig")
    def test_env_level_beats_config_level(self, mock_basic, clean_env):
        clean_env.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", level="DEBUG")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("replica_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, clean_env):
        clean_env.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("replica_sync.logger.logging.basicConfig")
    def test_unknown_level_falls_back_to_info(self, mock_basic, clean_env):
        clean_env.setenv("LOG_LEVEL", "CHATTY")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("replica_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic, clean_env):
        setup_logging(mode="cli", debug_format="json")
        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    @patch("replica_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic, clean_env):
        """Non-DEBUG mode silences charset_normalizer."""
        setup_logging(mode="cli")
        assert logging.getLogger("charset_normalizer").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def _record(self, **kwargs):
        defaults = dict(
            name="replica_sync.sync.engine",
            level=logging.INFO,
            pathname="engine.py",
            lineno=1,
            msg="Propagating %s from replica %d",
            args=("a.txt", 0),
            exc_info=None,
        )
        defaults.update(kwargs)
        return logging.LogRecord(**defaults)

    def test_basic_output(self):
        """Formatted output is valid single-line JSON with required keys."""
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        output = formatter.format(self._record())
        data = json.loads(output)

        assert "\n" not in output
        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "replica_sync.sync.engine"
        assert data["msg"] == "Propagating a.txt from replica 0"

    def test_includes_exception(self):
        """Exception info is included in the 'exc' key."""
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        try:
            raise OSError("disk full")
        except OSError:
            exc_info = sys.exc_info()

        data = json.loads(
            formatter.format(
                self._record(level=logging.ERROR, msg="failed", args=(), exc_info=exc_info)
            )
        )
        assert "OSError" in data["exc"]
        assert "disk full" in data["exc"]
