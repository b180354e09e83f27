from __future__ import annotations

import json

import pytest

from pos_sync.domain.models import RemoteConfig
from pos_sync.domain.remote_errors import MalformedRemoteRowError, RemoteConfigError
from pos_sync.infrastructure.sheets_client import SheetsClient
from pos_sync.infrastructure.sheets_remote_store import SHEET_HEADERS, SheetsRemoteStore, parse_row, row_values
from tests.e2e_sync.fakes import FakeGspreadClient, FakeWorksheet

CONFIG = RemoteConfig(spreadsheet_id="sheet-1", credentials_path="/creds.json", device_id="device-1")


def _store(fake: FakeGspreadClient, config: RemoteConfig = CONFIG) -> SheetsRemoteStore:
    return SheetsRemoteStore(SheetsClient(client_factory=fake.factory, sleeper=lambda _: None), config)


def test_upsert_appends_then_updates_in_place() -> None:
    fake = FakeGspreadClient()
    store = _store(fake)

    store.upsert("sales", {"id": "s1", "version": 1, "updatedAt": "2025-01-06T09:00:00.000Z", "totalAmount": 10})
    store.upsert("sales", {"id": "s2", "version": 1, "updatedAt": "2025-01-06T09:00:00.000Z"})
    store.upsert("sales", {"id": "s1", "version": 2, "updatedAt": "2025-01-06T09:05:00.000Z", "totalAmount": 12})

    values = fake.spreadsheet.worksheets["sales"].values
    assert values[0] == SHEET_HEADERS
    assert [row[0] for row in values[1:]] == ["s1", "s2"]
    assert values[1][1] == 2
    assert json.loads(values[1][3])["totalAmount"] == 12


def test_fetch_page_reads_the_requested_window() -> None:
    fake = FakeGspreadClient()
    store = _store(fake)
    for index in range(5):
        store.upsert("products", {"id": f"p{index}", "version": 1})

    first = store.fetch_page("products", 0, 2)
    last = store.fetch_page("products", 4, 2)

    assert [row["id"] for row in first.rows] == ["p0", "p1"]
    assert [row["id"] for row in last.rows] == ["p4"]
    assert last.scanned == 1
    assert store.fetch_page("products", 0, 0).rows == []


def test_delete_removes_the_row_and_tolerates_absent_rows() -> None:
    fake = FakeGspreadClient()
    store = _store(fake)
    store.upsert("product_sale_logs", {"id": "s1-p1"})
    store.upsert("product_sale_logs", {"id": "s1-p2"})

    store.delete("product_sale_logs", "s1-p1")
    store.delete("product_sale_logs", "never-there")

    assert [row["id"] for row in store.fetch_page("product_sale_logs", 0, 10).rows] == ["s1-p2"]


def test_blank_rows_are_skipped_and_malformed_rows_are_refused() -> None:
    fake = FakeGspreadClient()
    fake.spreadsheet.worksheets["users"] = FakeWorksheet(
        "users",
        [SHEET_HEADERS, ["u1", 1, "", json.dumps({"id": "u1", "name": "A"})], ["", "", "", ""], ["u2", 1, "", "{oops"]],
    )
    store = _store(fake)

    with pytest.raises(MalformedRemoteRowError, match="row 4") as info:
        store.fetch_page("users", 0, 10)
    assert (info.value.table, info.value.row_number) == ("users", 4)
    assert isinstance(info.value, RemoteConfigError)
    page = store.fetch_page("users", 0, 2)
    assert [row["id"] for row in page.rows] == ["u1"]
    assert page.scanned == 2


def test_unconfigured_store_refuses_to_connect() -> None:
    store = _store(FakeGspreadClient(), RemoteConfig(spreadsheet_id="", credentials_path="", device_id="d"))

    with pytest.raises(RemoteConfigError, match="not configured") as info:
        store.fetch_page("sales", 0, 10)
    assert info.value.table == "sales"


def test_row_codec_keeps_the_full_payload() -> None:
    row = {"id": "p1", "name": "Ginebra ñ", "version": None}

    values = row_values(row)

    assert values[:3] == ["p1", "", ""]
    assert parse_row("products", 2, values) == row
    assert parse_row("products", 3, ["p9", "", "", json.dumps({"name": "x"})]) == {"name": "x", "id": "p9"}
