from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from pos_sync.domain.models import RemoteConfig
from pos_sync.domain.remote_errors import MalformedRemoteRowError, RemoteConfigError
from pos_sync.domain.sync_models import RemotePage
from pos_sync.infrastructure.sheets_client import SheetsClient

logger = logging.getLogger(__name__)

SHEET_HEADERS = ["id", "version", "updated_at", "payload_json"]
_LAST_COLUMN = "D"


def row_values(row: dict[str, Any]) -> list[Any]:
    version = row.get("version")
    return [
        str(row["id"]),
        "" if version is None else version,
        row.get("updatedAt") or "",
        json.dumps(row, ensure_ascii=False, separators=(",", ":")),
    ]


def parse_row(table: str, row_number: int, cells: list[Any]) -> dict[str, Any] | None:
    """Decodes one worksheet row; blank rows yield None."""
    cells = [("" if cell is None else str(cell)) for cell in cells]
    if not any(cell.strip() for cell in cells):
        return None
    raw_payload = cells[3] if len(cells) > 3 else ""
    try:
        payload = json.loads(raw_payload)
    except json.JSONDecodeError as exc:
        raise MalformedRemoteRowError(table, row_number) from exc
    if not isinstance(payload, dict):
        raise MalformedRemoteRowError(table, row_number)
    payload.setdefault("id", cells[0])
    return payload


class SheetsRemoteStore:
    """Remote tables as worksheets: one row per record, the full snapshot in ``payload_json``."""

    def __init__(self, client: SheetsClient, config: RemoteConfig) -> None:
        self._client = client
        self._config = config
        self._open_lock = threading.Lock()
        self._table_locks: dict[str, threading.Lock] = {}
        self._table_locks_guard = threading.Lock()

    def upsert(self, table: str, row: dict[str, Any]) -> None:
        values = row_values(row)
        with self._table_lock(table):
            worksheet = self._worksheet(table)
            row_number = self._find_row(worksheet, table, values[0])
            if row_number is not None:
                self._client.call(
                    f"worksheet.update({table})",
                    lambda: worksheet.update(
                        range_name=f"A{row_number}:{_LAST_COLUMN}{row_number}",
                        values=[values],
                        value_input_option="RAW",
                    ),
                )
                return
            self._client.call(
                f"worksheet.append_row({table})",
                lambda: worksheet.append_row(values, value_input_option="RAW"),
            )

    def delete(self, table: str, row_id: str) -> None:
        with self._table_lock(table):
            worksheet = self._worksheet(table)
            row_number = self._find_row(worksheet, table, str(row_id))
            if row_number is None:
                logger.info("Delete of %s/%s skipped: row not present remotely", table, row_id)
                return
            self._client.call(f"worksheet.delete_rows({table})", lambda: worksheet.delete_rows(row_number))

    def fetch_page(self, table: str, offset: int, limit: int) -> RemotePage:
        if limit <= 0:
            return RemotePage()
        first_row = offset + 2
        last_row = first_row + limit - 1
        worksheet = self._worksheet(table)
        values = self._client.call(
            f"worksheet.get({table})",
            lambda: worksheet.get(f"A{first_row}:{_LAST_COLUMN}{last_row}"),
        ) or []
        rows: list[dict[str, Any]] = []
        for index, cells in enumerate(values):
            parsed = parse_row(table, first_row + index, list(cells))
            if parsed is not None:
                rows.append(parsed)
        return RemotePage(rows=rows, scanned=len(values))

    def _worksheet(self, table: str) -> Any:
        with self._open_lock:
            if not self._client.is_open:
                if not self._config.is_complete:
                    raise RemoteConfigError("Remote spreadsheet is not configured.", table=table)
                self._client.open_spreadsheet(Path(self._config.credentials_path), self._config.spreadsheet_id)
        return self._client.worksheet(table, SHEET_HEADERS)

    def _find_row(self, worksheet: Any, table: str, row_id: str) -> int | None:
        ids = self._client.call(f"worksheet.col_values({table})", lambda: worksheet.col_values(1))
        for index, value in enumerate(ids[1:], start=2):
            if str(value) == row_id:
                return index
        return None

    def _table_lock(self, table: str) -> threading.Lock:
        with self._table_locks_guard:
            return self._table_locks.setdefault(table, threading.Lock())
