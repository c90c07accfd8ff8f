"""Logging setup for replica_sync hosts.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
host calls ``setup_logging()`` once to decide where records go.
"""

import json
import logging
import os
import sys

DEFAULT_SERVICE_LOG = "/tmp/replica-sync.log"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line with ``ts``, ``level``, ``logger`` and ``msg``.

    A traceback, when the record has one, goes under ``exc``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    fmt = "[%(asctime)s] [%(levelname)s] "
    fmt += "%(name)s %(message)s" if with_name else "%(message)s"
    return logging.Formatter(fmt, datefmt=_DATEFMT)


def _file_handler(path: str, debug_format: str) -> logging.Handler:
    handler = logging.FileHandler(path, mode="a")
    handler.setFormatter(_formatter(debug_format, with_name=True))
    return handler


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure the root logger for a CLI or a long-running service.

    Args:
        mode: "cli" logs to stderr (plus *log_file* when given); "service"
            logs to a file only and never touches stdout or stderr.
        debug: Force DEBUG regardless of any other level setting.
        log_file: Log file path; in service mode it beats ``LOG_FILE``.
        debug_format: "text" or "json".
        level: Level name from the config file.

    Environment variables:
        LOG_LEVEL: Beats *level*. Without either, services log WARNING
                   and the CLI logs INFO.
        LOG_FILE: Service log file when *log_file* is not given.
                  Default: /tmp/replica-sync.log
    """
    fallback = "WARNING" if mode == "service" else "INFO"
    level_name = os.getenv("LOG_LEVEL", level or fallback).upper()
    log_level = (
        logging.DEBUG if debug else getattr(logging, level_name, logging.INFO)
    )

    handlers: list[logging.Handler]
    if mode == "service":
        path = log_file or os.getenv("LOG_FILE", DEFAULT_SERVICE_LOG)
        handlers = [_file_handler(path, debug_format)]
    else:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(_formatter(debug_format, with_name=False))
        handlers = [console]
        if log_file:
            handlers.append(_file_handler(log_file, debug_format))

    logging.basicConfig(level=log_level, handlers=handlers)

    if log_level != logging.DEBUG:
        logging.getLogger("charset_normalizer").setLevel(logging.WARNING)
