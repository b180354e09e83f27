from __future__ import annotations

import re
from datetime import datetime, timezone

from pos_sync.domain.ids import generate_id, product_sale_log_id
from pos_sync.domain.time_utils import parse_iso, to_epoch_ms, to_iso


def test_generated_ids_are_time_prefixed_and_unique() -> None:
    ids = {generate_id(1700000000000) for _ in range(50)}

    assert len(ids) == 50
    assert all(re.fullmatch(r"1700000000000-[0-9a-z]{7}", value) for value in ids)
    assert generate_id(5, suffix="abc") == "5-abc"


def test_sale_log_id_is_deterministic() -> None:
    assert product_sale_log_id("s1", "p9") == "s1-p9"


def test_iso_round_trip_with_trailing_z() -> None:
    moment = datetime(2025, 1, 6, 9, 0, 0, 123000, tzinfo=timezone.utc)

    text = to_iso(moment)

    assert text == "2025-01-06T09:00:00.123Z"
    assert parse_iso(text) == moment
    assert to_epoch_ms(moment) == 1736154000123


def test_parse_iso_rejects_garbage_and_assumes_utc_for_naive_values() -> None:
    assert parse_iso("yesterday") is None
    assert parse_iso(None) is None
    assert parse_iso("2025-01-06T09:00:00").tzinfo is not None
