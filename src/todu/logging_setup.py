# src/todu/logging_setup.py

from __future__ import annotations

import logging
import logging.handlers
import sys
from collections.abc import Iterable
from pathlib import Path

LOG_FILE_NAME = "todu.log"

# The sync watcher polls every couple of seconds; the file would grow without bound.
LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 3

# Loggers that talk on every poll/write. File only, unless WARNING+.
QUIET_PREFIXES: tuple[str, ...] = (
    "todu.storage.kv_backend",
    "todu.storage.sync_watcher",
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the REPL readable while the sync watcher runs in the background:
    - todu.* passes, except the QUIET_PREFIXES loggers below WARNING
    - captured warnings and any third-party logger only at ERROR+
    """

    def __init__(self, quiet_prefixes: Iterable[str] = QUIET_PREFIXES) -> None:
        super().__init__()
        self._quiet = tuple(quiet_prefixes)

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if not name.startswith("todu."):
            return record.levelno >= logging.ERROR
        if self._quiet and name.startswith(self._quiet):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/todu",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    quiet_prefixes: Iterable[str] = QUIET_PREFIXES,
) -> Path:
    """
    Install a filtered stderr handler and a rotating file handler under log_dir.

    Replaces whatever handlers the root logger had, so calling it twice does not
    duplicate output. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter(quiet_prefixes))
    root.addHandler(console)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    return log_file
