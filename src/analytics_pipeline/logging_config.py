"""Logging setup shared by the CLI and the analyses.

Analysis progress goes to stdout and, when a path is given, to a UTF-8 log
file. The MongoDB driver and the Dask scheduler are chatty at INFO, so their
loggers are held at WARNING unless the run itself asks for DEBUG.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Third-party loggers kept at WARNING for non-debug runs.
LIBRARY_LOGGERS = ("pymongo", "dask", "distributed")


def level_from_env(default: int = logging.INFO) -> int:
    """Resolve `ANALYTICS_LOG_LEVEL` (a name like ``"DEBUG"`` or a number)."""
    raw = os.getenv("ANALYTICS_LOG_LEVEL", "").strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    if not isinstance(level, int):
        raise RuntimeError(f"ANALYTICS_LOG_LEVEL must be a logging level name, got {raw!r}")
    return level


def configure_logging(log_path: Path | None = None, level: int = logging.INFO) -> None:
    """Configure root logging handlers and formatting.

    Calling this again replaces the handlers installed by a previous call.

    Args:
        log_path: Optional path to a file where logs will be written.
        level: Logging level (defaults to INFO).
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    library_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
