from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError

from pos_sync.core.observability import get_correlation_id
from pos_sync.core.operational_logging import log_operational_error
from pos_sync.domain.remote_errors import RemoteConfigError, RemotePermissionError, RemoteRateLimitError
from pos_sync.infrastructure.sheets_errors import map_gspread_exception

logger = logging.getLogger(__name__)

_MAX_RETRIES = 5
_BASE_BACKOFF_SECONDS = 1.0
_NEW_WORKSHEET_ROWS = 200

T = TypeVar("T")
ClientFactory = Callable[..., Any]


def backoff_seconds(attempt: int, base_seconds: float = _BASE_BACKOFF_SECONDS) -> float:
    return base_seconds * (2 ** (attempt - 1))


class SheetsClient:
    """gspread session for one spreadsheet with rate-limit retries and a worksheet cache."""

    def __init__(
        self,
        *,
        client_factory: ClientFactory = gspread.service_account,
        sleeper: Callable[[float], None] = time.sleep,
        max_retries: int = _MAX_RETRIES,
        base_backoff_seconds: float = _BASE_BACKOFF_SECONDS,
        request_timeout_seconds: float | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._sleeper = sleeper
        self._max_retries = max_retries
        self._base_backoff_seconds = base_backoff_seconds
        self._request_timeout_seconds = request_timeout_seconds
        self._spreadsheet: Any | None = None
        self._worksheet_cache: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._read_calls_count = 0
        self._write_calls_count = 0

    @property
    def is_open(self) -> bool:
        return self._spreadsheet is not None

    def open_spreadsheet(self, credentials_path: Path, spreadsheet_id: str) -> Any:
        logger.info("Connecting to Google Sheets spreadsheet %s", spreadsheet_id)
        try:
            client = self._client_factory(filename=str(credentials_path))
            if self._request_timeout_seconds is not None:
                # Bounds every HTTP request, so a stalled call cannot hold a worksheet lock forever.
                client.set_timeout(self._request_timeout_seconds)
            spreadsheet = self.call("open_spreadsheet", lambda: client.open_by_key(spreadsheet_id))
        except (
            gspread.exceptions.GSpreadException,
            FileNotFoundError,
            json.JSONDecodeError,
            DefaultCredentialsError,
            ValueError,
            OSError,
        ) as exc:
            mapped_error = map_gspread_exception(exc)
            if isinstance(mapped_error, RemotePermissionError):
                self._log_permission_error(mapped_error, spreadsheet_id=spreadsheet_id)
            if mapped_error is exc:
                raise
            raise mapped_error.with_context(operation="open_spreadsheet") from exc
        with self._lock:
            self._spreadsheet = spreadsheet
            self._worksheet_cache = {}
        return spreadsheet

    def worksheet(self, title: str, headers: list[str]) -> Any:
        """Returns the worksheet ``title``, creating it with a header row when missing."""
        with self._lock:
            cached = self._worksheet_cache.get(title)
            if cached is not None:
                return cached
            if self._spreadsheet is None:
                raise RemoteConfigError("Spreadsheet not opened; call open_spreadsheet first.")
            spreadsheet = self._spreadsheet
            try:
                worksheet = self.call(f"spreadsheet.worksheet({title})", lambda: spreadsheet.worksheet(title))
            except gspread.WorksheetNotFound:
                logger.info("Creating worksheet %s", title)
                worksheet = self.call(
                    f"spreadsheet.add_worksheet({title})",
                    lambda: spreadsheet.add_worksheet(title=title, rows=_NEW_WORKSHEET_ROWS, cols=len(headers)),
                )
            self._ensure_headers(worksheet, headers)
            self._worksheet_cache[title] = worksheet
            return worksheet

    def call(self, operation_name: str, operation: Callable[[], T]) -> T:
        """Runs one Sheets request, backing off exponentially while the API reports rate limiting."""
        for attempt in range(1, self._max_retries + 1):
            try:
                result = operation()
            except gspread.exceptions.APIError as exc:
                mapped_error = map_gspread_exception(exc)
                if not isinstance(mapped_error, RemoteRateLimitError):
                    if isinstance(mapped_error, RemotePermissionError):
                        self._log_permission_error(
                            mapped_error,
                            spreadsheet_id=getattr(self._spreadsheet, "id", None),
                            operation=operation_name,
                        )
                    raise mapped_error.with_context(operation=operation_name) from exc
                if attempt >= self._max_retries:
                    logger.error("Google Sheets rate limit persisted on %s after %s attempts", operation_name, attempt)
                    raise mapped_error.with_context(operation=operation_name) from exc
                delay = backoff_seconds(attempt, self._base_backoff_seconds)
                logger.warning(
                    "Google Sheets rate limit on %s; attempt=%s/%s backoff=%.3fs",
                    operation_name,
                    attempt,
                    self._max_retries,
                    delay,
                )
                self._sleeper(delay)
                continue
            self._count(operation_name)
            return result
        raise RemoteConfigError(f"Google Sheets operation {operation_name} did not complete.")

    def get_read_calls_count(self) -> int:
        return self._read_calls_count

    def get_write_calls_count(self) -> int:
        return self._write_calls_count

    def _ensure_headers(self, worksheet: Any, headers: list[str]) -> None:
        existing = self.call(f"worksheet.row_values({worksheet.title})", lambda: worksheet.row_values(1))
        if existing[: len(headers)] == headers:
            return
        if existing and any(cell.strip() for cell in existing):
            raise RemoteConfigError(
                f"Worksheet '{worksheet.title}' has unexpected headers {existing}; expected {headers}."
            )
        self.call(
            f"worksheet.update({worksheet.title})",
            lambda: worksheet.update(range_name="A1", values=[headers]),
        )

    def _count(self, operation_name: str) -> None:
        if any(token in operation_name for token in ("update", "append", "delete", "add_worksheet")):
            self._write_calls_count += 1
        else:
            self._read_calls_count += 1

    @staticmethod
    def _log_permission_error(
        error: RemotePermissionError,
        *,
        spreadsheet_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        log_operational_error(
            "Sync failed: insufficient permissions on Google Sheets",
            exc=error,
            extra={
                "correlation_id": get_correlation_id(),
                "operation": operation or "sheets_permission_check",
                "spreadsheet_id": spreadsheet_id,
            },
        )
