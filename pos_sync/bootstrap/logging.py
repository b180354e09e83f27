from __future__ import annotations

import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from pos_sync.core.observability import get_correlation_id, get_result_id

DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 10
MAIN_LOG_NAME = "pos_sync.log"
OPERATIONAL_ERROR_LOG_NAME = "operational_error.log"
CRASH_LOG_NAME = "crash.log"

# Sync context keys promoted from ``extra={"extra": {...}}`` to top-level fields.
PROMOTED_FIELDS = ("action_type", "queue_key", "collection")
NOISY_LOGGERS = ("gspread", "google.auth", "urllib3")


class SyncEventFormatter(logging.Formatter):
    """One JSON object per line; every event carries the till's device id."""

    def __init__(self, device_id: str | None = None) -> None:
        super().__init__()
        self._device_id = device_id

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }
        if self._device_id:
            event["device_id"] = self._device_id
        for key in ("result_id", "incident_id"):
            value = getattr(record, key, None) or (get_result_id() if key == "result_id" else None)
            if value:
                event[key] = value

        context = getattr(record, "extra", None)
        if isinstance(context, dict) and context:
            for key in PROMOTED_FIELDS:
                if key in context:
                    event[key] = context[key]
            event["extra"] = context

        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


class LevelRangeFilter(logging.Filter):
    """Passes records whose level lies in ``[min_level, max_level]``."""

    def __init__(self, min_level: int, max_level: int = logging.CRITICAL) -> None:
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self.min_level <= record.levelno <= self.max_level


@dataclass(frozen=True)
class LogFile:
    name: str
    min_level: int
    max_level: int = logging.CRITICAL


def _log_files(level: int) -> tuple[LogFile, ...]:
    return (
        LogFile(MAIN_LOG_NAME, level),
        LogFile(OPERATIONAL_ERROR_LOG_NAME, logging.ERROR, logging.ERROR),
        LogFile(CRASH_LOG_NAME, logging.CRITICAL),
    )


def _log_max_bytes() -> int:
    raw_value = os.getenv("POS_SYNC_LOG_MAX_BYTES")
    try:
        return int(raw_value) if raw_value else DEFAULT_LOG_MAX_BYTES
    except ValueError:
        return DEFAULT_LOG_MAX_BYTES


def configure_logging(
    log_dir: Path,
    *,
    max_bytes: int | None = None,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = logging.INFO,
    console: bool = False,
    device_id: str | None = None,
) -> None:
    """Routes all logging to rotating JSON-lines files under ``log_dir``.

    Replaces any handlers already on the root logger, so calling it twice
    (CLI re-entry, tests) never duplicates output.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = SyncEventFormatter(device_id)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level)

    for log_file in _log_files(level):
        handler = RotatingFileHandler(
            log_dir / log_file.name,
            maxBytes=max_bytes or _log_max_bytes(),
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(log_file.min_level)
        handler.setFormatter(formatter)
        if log_file.name != MAIN_LOG_NAME:
            handler.addFilter(LevelRangeFilter(handler.level, log_file.max_level))
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(logging.WARNING)
        stream.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root_logger.addHandler(stream)


def write_crash_log(exc_type: type[BaseException], exc: BaseException, tb: Any, log_dir: Path) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.getLogger("pos_sync.crash").critical(
        "Unhandled exception in %s",
        threading.current_thread().name,
        exc_info=(exc_type, exc, tb),
        extra={"extra": {"python": sys.version, "cwd": str(Path.cwd())}},
    )
    return log_dir / CRASH_LOG_NAME


def install_exception_hook(log_dir: Path) -> None:
    """Sends uncaught errors from the main thread and from sync worker threads to ``crash.log``."""

    def _handler(exc_type, exc, tb) -> None:
        try:
            write_crash_log(exc_type, exc, tb, log_dir)
        except OSError:
            sys.__excepthook__(exc_type, exc, tb)

    def _thread_handler(args: threading.ExceptHookArgs) -> None:
        if args.exc_value is not None:
            _handler(args.exc_type, args.exc_value, args.exc_traceback)

    sys.excepthook = _handler
    threading.excepthook = _thread_handler
