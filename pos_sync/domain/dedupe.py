from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping

from pos_sync.domain.ids import product_sale_log_id
from pos_sync.domain.time_utils import parse_iso


def natural_key(record: Mapping[str, Any]) -> tuple[str, str] | None:
    sale_id = record.get("saleId")
    product_id = record.get("productId")
    if not sale_id or not product_id:
        return None
    return str(sale_id), str(product_id)


def _timestamp_rank(value: Any) -> float:
    if isinstance(value, bool):
        return float("-inf")
    if isinstance(value, (int, float)):
        return float(value)
    parsed = parse_iso(value)
    if isinstance(parsed, datetime):
        return parsed.timestamp() * 1000
    return float("-inf")


def _rank(record: Mapping[str, Any], key: tuple[str, str]) -> tuple[float, bool, str]:
    record_id = str(record.get("id", ""))
    return (
        _timestamp_rank(record.get("timestamp")),
        record_id == product_sale_log_id(*key),
        record_id,
    )


def collapse_duplicates(records: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    """Keeps one sale log per (saleId, productId).

    The survivor has the latest ``timestamp``; ties go to the record carrying
    the deterministic ``{saleId}-{productId}`` id, then to the greatest id.
    Records without a natural key pass through untouched. Output keeps the
    order in which each survivor's key was first seen.
    """
    winners: dict[tuple[str, str], Mapping[str, Any]] = {}
    ordered: list[tuple[str, str] | int] = []
    passthrough: list[Mapping[str, Any]] = []
    for record in records:
        key = natural_key(record)
        if key is None:
            ordered.append(len(passthrough))
            passthrough.append(record)
            continue
        current = winners.get(key)
        if current is None:
            winners[key] = record
            ordered.append(key)
        elif _rank(record, key) > _rank(current, key):
            winners[key] = record
    return [passthrough[slot] if isinstance(slot, int) else winners[slot] for slot in ordered]
