from __future__ import annotations

import pytest

from pos_sync.domain.action_types import ActionType
from pos_sync.infrastructure.local_store import LocalStore
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteDeadLetterQueue, SQLiteSyncQueue


def _enqueue(store: LocalStore, queue: SQLiteSyncQueue, action, payload, **kwargs) -> int:
    with store.transaction("sync_queue") as tx:
        return queue.enqueue(tx, action, payload, **kwargs)


def test_entries_come_back_in_insertion_order(store: LocalStore, queue: SQLiteSyncQueue) -> None:
    first = _enqueue(store, queue, ActionType.SALE, {"id": "s1"}, timestamp_ms=10)
    second = _enqueue(store, queue, "UPDATE_PRODUCT", {"id": "p1"}, timestamp_ms=5)

    pending = queue.list_pending()

    assert [item.key for item in pending] == [first, second]
    assert pending[0].type == "SALE"
    assert pending[0].payload == {"id": "s1"}
    assert pending[0].retry_count == 0
    assert queue.oldest_timestamp() == 5


def test_enqueue_uses_the_clock_when_no_timestamp_is_given(store: LocalStore, queue: SQLiteSyncQueue, clock) -> None:
    key = _enqueue(store, queue, ActionType.LOG, {"id": "a1"})

    assert queue.get(key).timestamp == int(clock().timestamp() * 1000)


def test_entry_is_dropped_when_the_owning_transaction_fails(store: LocalStore, queue: SQLiteSyncQueue) -> None:
    with pytest.raises(RuntimeError):
        with store.transaction("sales", "sync_queue") as tx:
            tx.put("sales", {"id": "s1"})
            queue.enqueue(tx, ActionType.SALE, {"id": "s1"})
            raise RuntimeError("abort")

    assert queue.count() == 0


def test_retry_count_update_and_delete(store: LocalStore, queue: SQLiteSyncQueue) -> None:
    key = _enqueue(store, queue, ActionType.SALE, {"id": "s1"})

    queue.update_retry_count(key, 3)
    assert queue.get(key).retry_count == 3

    assert queue.delete(key) is True
    assert queue.delete(key) is False
    assert queue.get(key) is None


def test_move_to_dead_letter_is_atomic_and_keeps_the_key(
    store: LocalStore, queue: SQLiteSyncQueue, dead_letter_queue: SQLiteDeadLetterQueue
) -> None:
    key = _enqueue(store, queue, ActionType.SALE, {"id": "s1"}, timestamp_ms=100)
    item = queue.get(key)

    failed = queue.move_to_dead_letter(item, last_error="HTTP 500", failed_at_ms=999)

    assert queue.count() == 0
    assert dead_letter_queue.count() == 1
    stored = dead_letter_queue.get(key)
    assert stored == failed
    assert stored.can_retry is True
    assert stored.to_payload()["lastError"] == "HTTP 500"
    assert stored.to_payload()["failedAt"] == 999


def test_dead_letter_retry_failure_bookkeeping(
    store: LocalStore, queue: SQLiteSyncQueue, dead_letter_queue: SQLiteDeadLetterQueue
) -> None:
    for sale_id in ("s1", "s2"):
        key = _enqueue(store, queue, ActionType.SALE, {"id": sale_id})
        queue.move_to_dead_letter(queue.get(key), last_error="first", failed_at_ms=1)
    first_key = dead_letter_queue.list_failed()[0].key

    dead_letter_queue.record_retry_failure(first_key, "second")

    updated = dead_letter_queue.get(first_key)
    assert (updated.last_error, updated.total_retries) == ("second", 1)
    assert dead_letter_queue.delete(first_key) is True
    assert dead_letter_queue.delete_all() == 1
    assert dead_letter_queue.list_failed() == []


def test_pending_ids_filters_by_action_type(store: LocalStore, queue: SQLiteSyncQueue) -> None:
    _enqueue(store, queue, ActionType.UPDATE_PRODUCT, {"id": "p1"})
    _enqueue(store, queue, ActionType.DELETE_PRODUCT, {"id": "p2"})
    _enqueue(store, queue, ActionType.ADD_PRODUCT, {"id": "p3"})
    _enqueue(store, queue, ActionType.ADD_PRODUCT, {"name": "no id"})

    assert queue.pending_ids([ActionType.UPDATE_PRODUCT, "ADD_PRODUCT"]) == {"p1", "p3"}
    assert queue.pending_ids([]) == set()


def test_drop_superseded_removes_only_older_upserts_of_that_entity(store: LocalStore, queue: SQLiteSyncQueue) -> None:
    _enqueue(store, queue, ActionType.UPDATE_PRODUCT, {"id": "p1", "version": 2})
    _enqueue(store, queue, ActionType.RECEIVE_STOCK, {"id": "p1", "version": 3})
    _enqueue(store, queue, ActionType.UPDATE_PRODUCT, {"id": "p1", "version": 4})
    _enqueue(store, queue, ActionType.UPDATE_PRODUCT, {"id": "p2", "version": 1})
    _enqueue(store, queue, ActionType.DELETE_PRODUCT, {"id": "p1", "version": 1})

    with store.transaction("sync_queue") as tx:
        dropped = queue.drop_superseded(
            tx, [ActionType.UPDATE_PRODUCT, ActionType.RECEIVE_STOCK], "p1", {"id": "p1", "version": 3}
        )

    assert dropped == 2
    assert [(item.type, item.payload["id"], item.payload["version"]) for item in queue.list_pending()] == [
        ("UPDATE_PRODUCT", "p1", 4),
        ("UPDATE_PRODUCT", "p2", 1),
        ("DELETE_PRODUCT", "p1", 1),
    ]
