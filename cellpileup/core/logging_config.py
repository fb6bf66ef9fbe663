#!/usr/bin/env python3
"""Console and file log sinks for cellpileup, on loguru.

Modules log through ``get_logger(__name__)``. The console goes through rich;
at INFO only the entry points report progress there, the engine modules only
surface warnings. The per-run log file written by ``add_file_handler`` always
receives everything from DEBUG up.
"""

import contextlib
from datetime import datetime
from pathlib import Path
from typing import Literal

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Modules allowed to report progress on the console at INFO
CONSOLE_LEVELS: dict[str, str] = {
    "": "WARNING",
    "cellpileup.cli": "INFO",
    "cellpileup.run_pileup": "INFO",
}

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

_file_handler_id: int | None = None


def console_filter(level: LogLevel) -> dict[str, str] | None:
    """Per-module console levels; None lets every module through at ``level``."""
    return dict(CONSOLE_LEVELS) if level == "INFO" else None


def setup_logging(level: LogLevel = "INFO", console: Console | None = None) -> int:
    """Replace all sinks with a single rich console sink.

    Any file sink added earlier is dropped as well.

    Returns:
        Handler ID of the console sink.
    """
    global _file_handler_id

    logger.remove()
    _file_handler_id = None
    return logger.add(
        RichHandler(console=console, markup=True, show_time=False, show_level=True, show_path=False),
        format="{message}",
        level=level,
        filter=console_filter(level),
    )


def get_logger(name: str | None = None):
    """Logger bound to ``name``; console filtering goes by the calling module."""
    return logger.bind(name=name or "cellpileup")


def get_log_path(output_dir: Path | str) -> Path:
    """Timestamped log path inside ``output_dir``: cellpileup_YYYYMMDD_HHMMSS.log"""
    return Path(output_dir) / datetime.now().strftime("cellpileup_%Y%m%d_%H%M%S.log")


def add_file_handler(log_path: Path | str, level: LogLevel = "DEBUG") -> int:
    """Send the run's log to ``log_path``, replacing the file sink of a previous run."""
    global _file_handler_id

    if _file_handler_id is not None:
        with contextlib.suppress(ValueError):
            logger.remove(_file_handler_id)

    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _file_handler_id = logger.add(str(log_path), format=FILE_FORMAT, level=level)
    return _file_handler_id
