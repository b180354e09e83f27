from __future__ import annotations

from pos_sync.infrastructure.local_store import LocalStore
from pos_sync.infrastructure.merge_conflicts_sqlite import SQLiteMergeConflictLog


def test_records_both_snapshots(store: LocalStore, conflict_log: SQLiteMergeConflictLog) -> None:
    with store.transaction("merge_conflicts") as tx:
        conflict_log.record(
            tx,
            entity_type="products",
            entity_id="p1",
            discarded={"id": "p1", "stock": 3},
            kept={"id": "p1", "stock": 5},
            detected_at="2025-01-06T09:00:00.000Z",
        )
        conflict_log.record(
            tx,
            entity_type="sales",
            entity_id="s1",
            discarded={"id": "s1"},
            kept={"id": "s1", "isVoided": True},
            detected_at="2025-01-06T09:00:00.000Z",
        )

    products = conflict_log.list_conflicts("products")

    assert conflict_log.count_conflicts() == 2
    assert len(products) == 1
    assert products[0].discarded == {"id": "p1", "stock": 3}
    assert products[0].kept == {"id": "p1", "stock": 5}
    assert [item.entity_id for item in conflict_log.list_conflicts()] == ["p1", "s1"]
    assert conflict_log.clear() == 2
