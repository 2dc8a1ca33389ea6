"""
Logging configuration — one root setup per envforge process.

The CLI group calls ``setup_logging(debug=..., verbose=..., quiet=...)``
before any command runs; modules only ever do
``logger = logging.getLogger(__name__)``.

Console level, first match wins:

    --debug      DEBUG    file:line and worker thread names
    --verbose    INFO     timestamp + logger name
    --quiet      ERROR    bare messages
    $ENVFORGE_LOG_LEVEL
    (default)    WARNING  bare messages

A second, more detailed sink can be added with ``log_file`` or
``$ENVFORGE_LOG_FILE`` (level ``log_file_level`` / ``$ENVFORGE_LOG_FILE_LEVEL``).
Cleanup runs deletions on a thread pool, so every detailed format names the
thread that logged the line.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ENV_LOG_LEVEL = "ENVFORGE_LOG_LEVEL"
ENV_LOG_FILE = "ENVFORGE_LOG_FILE"
ENV_LOG_FILE_LEVEL = "ENVFORGE_LOG_FILE_LEVEL"

_DETAILED = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s"

# (threshold, format, datefmt): first row whose threshold >= level is used
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, _DETAILED, "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Libraries that get chatty below WARNING
_NOISY_LOGGERS = ("urllib3", "asyncio")


def resolve_level(debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Pick the console level name from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(ENV_LOG_LEVEL, "WARNING")


def setup_logging(
    level: str | None = None,
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console (and optional file) handler on the root logger.

    Args:
        level: Explicit level name. When omitted, derived from the flags
            and ``$ENVFORGE_LOG_LEVEL`` via :func:`resolve_level`.
        debug, verbose, quiet: CLI verbosity flags.
        log_file: Extra log file; falls back to ``$ENVFORGE_LOG_FILE``.
            Missing parent directories are created.
        log_file_level: Level for the file; defaults to the console level.

    Example::

        setup_logging(verbose=True)                    # INFO on stderr
        setup_logging("WARNING", log_file="run.log",
                      log_file_level="DEBUG")          # quiet console, full file
    """
    console_level = _parse_level(level or resolve_level(debug, verbose, quiet))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level))
    root_level = console_level

    log_file = log_file or os.environ.get(ENV_LOG_FILE)
    if log_file:
        file_level_name = log_file_level or os.environ.get(ENV_LOG_FILE_LEVEL)
        file_level = _parse_level(file_level_name) if file_level_name else console_level
        root.addHandler(_file_handler(Path(log_file), file_level))
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    noisy_level = logging.NOTSET if console_level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next((f, d) for limit, f, d in _CONSOLE_FORMATS if level <= limit)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_DETAILED, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(name: str | None) -> int:
    """Level name → numeric level; anything unrecognised is WARNING."""
    numeric = getattr(logging, (name or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
