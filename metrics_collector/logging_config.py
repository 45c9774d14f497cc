"""Logging setup for collector runs.

Levels used across the package:

- ERROR: an event made it impossible to continue the run (e.g. lock held).
- WARNING: a potential problem the operator of an otherwise unattended
  setup should look at (I/O failures, malformed documents, refused appends).
- INFO: progress summaries that confirm a run works as expected.
- DEBUG: per-document and per-line tracing.

Warnings and above go to the console; everything at the configured level
goes to a rotating file under the log directory.
"""

from __future__ import annotations

import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

CONSOLE_FORMAT = "%(asctime)s %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(funcName)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_BYTES = 5_000_000
LOG_BACKUPS = 5


def _utc_formatter(fmt: str) -> logging.Formatter:
    formatter = logging.Formatter(fmt, datefmt=DATE_FORMAT)
    formatter.converter = time.gmtime
    return formatter


def setup_logging(
    log_directory: Path | str = "log",
    module_name: str = "collector",
    level: str | int = logging.DEBUG,
) -> None:
    """Replace root handlers with a console handler and a rotating file handler."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setFormatter(_utc_formatter(CONSOLE_FORMAT))
    console.setLevel(logging.WARNING)
    root.addHandler(console)

    # Third-party HTTP chatter is not interesting below WARNING
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    log_directory = Path(log_directory)
    try:
        log_directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_directory / module_name,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUPS,
            encoding="utf-8",
        )
    except OSError as exc:
        logging.getLogger(__name__).warning(
            "Could not write to log file in %s (%s). Logging to file is disabled.", log_directory, exc
        )
        return

    file_handler.setFormatter(_utc_formatter(FILE_FORMAT))
    file_handler.setLevel(level)
    root.addHandler(file_handler)
