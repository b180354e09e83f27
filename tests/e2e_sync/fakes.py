from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta
from typing import Any

import gspread

from pos_sync.domain.ids import generate_id
from pos_sync.domain.sync_models import RemotePage


class FixedClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class SequentialIds:
    def __init__(self) -> None:
        self.issued = 0

    def __call__(self, now_ms: int) -> str:
        self.issued += 1
        return generate_id(now_ms, suffix=f"{self.issued:07d}")


class FakeConnectivity:
    def __init__(self, online: bool = True) -> None:
        self.online = online

    def is_online(self) -> bool:
        return self.online


class InMemoryRemoteStore:
    """Fake explicit remote store: ordered tables, call log and failure injection."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.fetch_calls: list[tuple[str, int, int]] = []
        self.failing_tables: set[str] = set()
        self.fetch_error: Exception | None = None
        self._lock = threading.Lock()

    def seed(self, table: str, rows: list[dict[str, Any]]) -> None:
        for row in rows:
            self.tables.setdefault(table, {})[str(row["id"])] = dict(row)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables.get(table, {}).values())

    def row(self, table: str, row_id: str) -> dict[str, Any] | None:
        return self.tables.get(table, {}).get(row_id)

    def upsert(self, table: str, row: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append(("upsert", table, str(row.get("id"))))
            if table in self.failing_tables:
                raise ConnectionError(f"remote table {table} unavailable")
            self.tables.setdefault(table, {})[str(row["id"])] = dict(row)

    def delete(self, table: str, row_id: str) -> None:
        with self._lock:
            self.calls.append(("delete", table, row_id))
            if table in self.failing_tables:
                raise ConnectionError(f"remote table {table} unavailable")
            self.tables.get(table, {}).pop(row_id, None)

    def fetch_page(self, table: str, offset: int, limit: int) -> RemotePage:
        self.fetch_calls.append((table, offset, limit))
        if self.fetch_error is not None:
            raise self.fetch_error
        window = self.rows(table)[offset : offset + limit]
        return RemotePage(rows=[dict(row) for row in window], scanned=len(window))


class HangingRemoteStore(InMemoryRemoteStore):
    """Upserts to ``hanging_table`` block until ``release`` is set."""

    def __init__(self, hanging_table: str) -> None:
        super().__init__()
        self.hanging_table = hanging_table
        self.release = threading.Event()
        self.entered = threading.Event()

    def upsert(self, table: str, row: dict[str, Any]) -> None:
        if table == self.hanging_table:
            self.entered.set()
            self.release.wait(10)
        super().upsert(table, row)


class FakeResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text


def api_error(status_code: int, text: str) -> gspread.exceptions.APIError:
    return gspread.exceptions.APIError(FakeResponse(status_code, text))


_RANGE = re.compile(r"^A(\d+):D(\d+)$")


class FakeWorksheet:
    """Minimal gspread worksheet over a list of rows (row 1 is the header)."""

    def __init__(self, title: str, rows: list[list[Any]] | None = None) -> None:
        self.title = title
        self.values: list[list[Any]] = [list(row) for row in rows or []]

    def row_values(self, row: int) -> list[Any]:
        return list(self.values[row - 1]) if len(self.values) >= row else []

    def col_values(self, col: int) -> list[Any]:
        return [row[col - 1] if len(row) >= col else "" for row in self.values]

    def get(self, range_name: str) -> list[list[Any]]:
        match = _RANGE.match(range_name)
        assert match, range_name
        first, last = int(match.group(1)), int(match.group(2))
        return [list(row) for row in self.values[first - 1 : last]]

    def update(self, range_name: str, values: list[list[Any]], value_input_option: str | None = None) -> None:
        row_number = int(re.match(r"^A(\d+)", range_name).group(1))
        while len(self.values) < row_number:
            self.values.append([])
        self.values[row_number - 1] = list(values[0])

    def append_row(self, values: list[Any], value_input_option: str | None = None) -> None:
        self.values.append(list(values))

    def delete_rows(self, index: int) -> None:
        del self.values[index - 1]


class FakeSpreadsheet:
    def __init__(self, spreadsheet_id: str = "sheet-e2e") -> None:
        self.id = spreadsheet_id
        self.worksheets: dict[str, FakeWorksheet] = {}

    def worksheet(self, title: str) -> FakeWorksheet:
        if title not in self.worksheets:
            raise gspread.exceptions.WorksheetNotFound(title)
        return self.worksheets[title]

    def add_worksheet(self, title: str, rows: int, cols: int) -> FakeWorksheet:
        sheet = FakeWorksheet(title)
        self.worksheets[title] = sheet
        return sheet


class FakeGspreadClient:
    def __init__(self, spreadsheet: FakeSpreadsheet | None = None) -> None:
        self.spreadsheet = spreadsheet or FakeSpreadsheet()
        self.opened: list[str] = []
        self.credentials: list[str] = []
        self.timeout: float | None = None

    def factory(self, filename: str) -> "FakeGspreadClient":
        self.credentials.append(filename)
        return self

    def set_timeout(self, timeout: float | None) -> None:
        self.timeout = timeout

    def open_by_key(self, key: str) -> FakeSpreadsheet:
        self.opened.append(key)
        return self.spreadsheet


def sign_in(container: Any, pin: str) -> Any:
    return container.session.login(pin)


def pending_types(queue: Any) -> list[str]:
    return [item.type for item in queue.list_pending()]
