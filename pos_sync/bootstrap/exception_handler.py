from __future__ import annotations

import json
import logging
import threading
import traceback
import uuid
from dataclasses import asdict, dataclass
from types import TracebackType
from typing import Any

from pos_sync.bootstrap.logging import CRASH_LOG_NAME
from pos_sync.bootstrap.settings import resolve_log_dir
from pos_sync.core.observability import generate_correlation_id, get_correlation_id, set_correlation_id


def generate_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


@dataclass(frozen=True)
class TillIncident:
    """What an operator needs to find a crash of one till in the shared logs."""

    incident_id: str
    correlation_id: str
    device_id: str | None
    thread: str
    error_type: str
    error_message: str

    def log_extra(self) -> dict[str, Any]:
        return {
            "incident_id": self.incident_id,
            "correlation_id": self.correlation_id,
            "extra": {"device_id": self.device_id, "thread": self.thread},
        }


def _current_correlation_id() -> str:
    correlation_id = get_correlation_id()
    if not correlation_id:
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)
    return correlation_id


def _append_crash_record(incident: TillIncident, stacktrace: str) -> None:
    # Written by hand: the logging pipeline is what just failed.
    record = {**asdict(incident), "stacktrace": stacktrace}
    with (resolve_log_dir() / CRASH_LOG_NAME).open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, ensure_ascii=False) + "\n")


def handle_unexpected_exception(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
    *,
    device_id: str | None = None,
) -> str:
    """Logs an unhandled error under a fresh incident id and returns the id for the operator.

    The incident carries the till's device id so crashes from several tills
    sharing one spreadsheet can be told apart.
    """
    incident = TillIncident(
        incident_id=generate_incident_id(),
        correlation_id=_current_correlation_id(),
        device_id=device_id,
        thread=threading.current_thread().name,
        error_type=exc_type.__name__,
        error_message=str(exc_value),
    )
    logger = logging.getLogger("pos_sync.global_exception")
    try:
        logger.critical(
            "Unhandled exception on till %s. incident_id=%s",
            device_id or "unknown",
            incident.incident_id,
            exc_info=(exc_type, exc_value, exc_traceback),
            extra=incident.log_extra(),
        )
    except Exception:  # noqa: BLE001
        _append_crash_record(incident, "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)))
    return incident.incident_id
