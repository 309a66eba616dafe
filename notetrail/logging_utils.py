from __future__ import annotations

import logging
import os
import sys
import traceback
from collections.abc import Mapping
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import MappingProxyType

_LOGGER = logging.getLogger("notetrail.logging")
LOG_DIR_ENV = "NOTETRAIL_LOG_DIR"
DEBUG_ENV = "NOTETRAIL_DEBUG"
_CACHE_DIR_ENV = "NOTETRAIL_CACHE_DIR"
_PACKAGE_LOGGER = "notetrail"
_LOG_FILE = "notetrail.log"
_LOG_MAX_BYTES = 2 * 1024 * 1024
_LOG_BACKUPS = 3

_CONSOLE_FORMAT = "%(mark)s %(component)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVEL_MARKS: Mapping[int, str] = MappingProxyType(
    {
        logging.DEBUG: "🐛",
        logging.INFO: "🎵",
        logging.WARNING: "⚠️",
        logging.ERROR: "❌",
        logging.CRITICAL: "💥",
    }
)

_configured = False


class _ConsoleFormatter(logging.Formatter):
    """Level mark plus the logger name without the package prefix."""

    def format(self, record: logging.LogRecord) -> str:
        record.mark = _LEVEL_MARKS.get(record.levelno, "")
        record.component = record.name.removeprefix(f"{_PACKAGE_LOGGER}.")
        return super().format(record)


def _cache_dir() -> Path:
    configured = os.environ.get(_CACHE_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "notetrail"


def get_log_dir() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return _cache_dir() / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def _console_level(verbose: bool) -> int:
    return logging.DEBUG if verbose or os.environ.get(DEBUG_ENV) else logging.INFO


def configure_logging(*, force: bool = False, verbose: bool = False) -> None:
    """Attach console and rotating-file handlers to the ``notetrail`` logger.

    The console handler is skipped when the host application already set up
    root handlers; records still propagate to them.
    """

    global _configured
    if _configured and not force:
        return

    logger = logging.getLogger(_PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if force or not logging.getLogger().handlers:
        console = logging.StreamHandler(stream=sys.__stderr__)
        console.setLevel(_console_level(verbose))
        console.setFormatter(_ConsoleFormatter(_CONSOLE_FORMAT))
        logger.addHandler(console)

    try:
        get_log_dir().mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            get_log_path(), maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8"
        )
    except OSError as exc:
        _LOGGER.warning("File logging disabled: %s", exc)
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = True
    _configured = True


def log_exception(context: str, exc: BaseException) -> Path | None:
    """Append ``exc`` with its traceback to the log file; never raises."""

    path = get_log_path()
    lines = traceback.format_exception(type(exc), exc, exc.__traceback__)
    entry = f"[{datetime.now().isoformat()}] {context} failed: {type(exc).__name__}: {exc}\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(entry)
            handle.writelines(lines)
            handle.write("\n")
    except OSError as log_exc:
        _LOGGER.warning("Could not write %s: %s", path, log_exc)
        return None
    return path
