from __future__ import annotations

import logging
import socket
import time
from typing import Callable

logger = logging.getLogger(__name__)

SHEETS_API_HOST = "sheets.googleapis.com"


class SocketConnectivityProbe:
    """Treats the device as online when a TCP connection to the Sheets API host succeeds."""

    def __init__(
        self,
        host: str = SHEETS_API_HOST,
        port: int = 443,
        timeout_seconds: float = 3.0,
        connector: Callable[..., socket.socket] = socket.create_connection,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout_seconds = timeout_seconds
        self._connector = connector
        self.last_latency_ms: int | None = None

    def is_online(self) -> bool:
        started = time.monotonic()
        try:
            with self._connector((self._host, self._port), timeout=self._timeout_seconds):
                pass
        except OSError as exc:
            logger.debug("Connectivity probe to %s:%s failed: %s", self._host, self._port, exc)
            self.last_latency_ms = None
            return False
        self.last_latency_ms = int((time.monotonic() - started) * 1000)
        return True
