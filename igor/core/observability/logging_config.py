"""
Logging configuration — central setup for the CLI.

main.py calls ``setup_logging`` once per invocation.  Module loggers
(``logging.getLogger(__name__)``) and the context's logging facade
(the ``igor`` logger) all propagate to the handlers installed here.

Level precedence:
    CLI flag  >  IGOR_LOG_LEVEL  >  WARNING

IGOR_LOG_FILE adds a file handler; IGOR_LOG_FILE_LEVEL sets its level
independently of the console.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LEVEL = "IGOR_LOG_LEVEL"
ENV_FILE = "IGOR_LOG_FILE"
ENV_FILE_LEVEL = "IGOR_LOG_FILE_LEVEL"

DEFAULT_LEVEL = "WARNING"

# (format, datefmt) by the most verbose level they apply to
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
)
_PLAIN_FORMAT = "%(message)s"

_FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def resolve_level(flag_level: str | None = None) -> str:
    """CLI flag wins, then IGOR_LOG_LEVEL, then WARNING."""
    return flag_level or os.environ.get(ENV_LEVEL) or DEFAULT_LEVEL


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.WARNING


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _PLAIN_FORMAT, None
    for threshold, candidate, candidate_datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            fmt, datefmt = candidate, candidate_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def setup_logging(
    level: str = DEFAULT_LEVEL,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install console (and optional file) handlers on the root logger.

    Replaces any handlers a previous call installed, so calling it again
    reconfigures rather than duplicates output.

    Args:
        level: Console level name.
        log_file: Log file path; defaults to IGOR_LOG_FILE.
        log_file_level: File level name; defaults to IGOR_LOG_FILE_LEVEL,
            then ``level``.
    """
    console_level = _parse_level(level)
    log_file = log_file or os.environ.get(ENV_FILE)
    log_file_level = log_file_level or os.environ.get(ENV_FILE_LEVEL)

    handlers = [_console_handler(console_level)]
    root_level = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_file_handler(log_file, file_level))
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(root_level)
