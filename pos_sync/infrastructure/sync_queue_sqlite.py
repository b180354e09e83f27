from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Iterable, Mapping

from pos_sync.domain.action_types import ActionType, action_value
from pos_sync.domain.collections import FAILED_SYNC_QUEUE, SYNC_QUEUE
from pos_sync.domain.sync_models import FailedSyncQueueItem, SyncQueueItem
from pos_sync.domain.time_utils import Clock, to_epoch_ms, utc_now
from pos_sync.domain.versioning import compare_versions
from pos_sync.infrastructure.local_store import LocalStore, StoreTransaction

logger = logging.getLogger(__name__)


def _entity_id(payload: Mapping[str, Any]) -> str | None:
    value = payload.get("id") if isinstance(payload, Mapping) else None
    return str(value) if value not in (None, "") else None


def _row_to_item(row: sqlite3.Row) -> SyncQueueItem:
    return SyncQueueItem(
        key=row["key"],
        type=row["type"],
        payload=json.loads(row["payload_json"]),
        timestamp=row["timestamp"],
        retry_count=row["retry_count"],
    )


def _row_to_failed(row: sqlite3.Row) -> FailedSyncQueueItem:
    return FailedSyncQueueItem(
        key=row["key"],
        type=row["type"],
        payload=json.loads(row["payload_json"]),
        timestamp=row["timestamp"],
        retry_count=row["retry_count"],
        failed_at=row["failed_at"],
        total_retries=row["total_retries"],
        can_retry=bool(row["can_retry"]),
        last_error=row["last_error"],
    )


class SQLiteSyncQueue:
    """Outbound operations awaiting delivery, in insertion order."""

    def __init__(self, store: LocalStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def enqueue(
        self,
        tx: StoreTransaction,
        action_type: ActionType | str,
        payload: Mapping[str, Any],
        *,
        timestamp_ms: int | None = None,
    ) -> int:
        """Appends an entry inside the caller's transaction; it commits or rolls back with it."""
        cursor = tx.execute(
            SYNC_QUEUE,
            """
            INSERT INTO sync_queue (type, entity_id, payload_json, timestamp, retry_count)
            VALUES (?, ?, ?, ?, 0)
            """,
            (
                action_value(action_type),
                _entity_id(payload),
                json.dumps(dict(payload), ensure_ascii=False),
                timestamp_ms if timestamp_ms is not None else to_epoch_ms(self._clock()),
            ),
        )
        return int(cursor.lastrowid)

    def list_pending(self) -> list[SyncQueueItem]:
        with self._store.transaction(SYNC_QUEUE) as tx:
            rows = tx.execute(SYNC_QUEUE, "SELECT * FROM sync_queue ORDER BY key").fetchall()
        return [_row_to_item(row) for row in rows]

    def get(self, key: int) -> SyncQueueItem | None:
        with self._store.transaction(SYNC_QUEUE) as tx:
            row = tx.execute(SYNC_QUEUE, "SELECT * FROM sync_queue WHERE key = ?", (key,)).fetchone()
        return _row_to_item(row) if row else None

    def delete(self, key: int) -> bool:
        with self._store.transaction(SYNC_QUEUE) as tx:
            cursor = tx.execute(SYNC_QUEUE, "DELETE FROM sync_queue WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def update_retry_count(self, key: int, retry_count: int) -> None:
        with self._store.transaction(SYNC_QUEUE) as tx:
            tx.execute(SYNC_QUEUE, "UPDATE sync_queue SET retry_count = ? WHERE key = ?", (retry_count, key))

    def move_to_dead_letter(self, item: SyncQueueItem, *, last_error: str, failed_at_ms: int) -> FailedSyncQueueItem:
        failed = FailedSyncQueueItem(
            key=item.key,
            type=item.type,
            payload=item.payload,
            timestamp=item.timestamp,
            retry_count=item.retry_count,
            failed_at=failed_at_ms,
            total_retries=item.retry_count,
            can_retry=True,
            last_error=last_error,
        )
        with self._store.transaction(SYNC_QUEUE, FAILED_SYNC_QUEUE) as tx:
            tx.execute(
                FAILED_SYNC_QUEUE,
                """
                INSERT OR REPLACE INTO failed_sync_queue (
                    key, type, entity_id, payload_json, timestamp, retry_count,
                    failed_at, total_retries, can_retry, last_error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    failed.key,
                    failed.type,
                    _entity_id(failed.payload),
                    json.dumps(failed.payload, ensure_ascii=False),
                    failed.timestamp,
                    failed.retry_count,
                    failed.failed_at,
                    failed.total_retries,
                    1 if failed.can_retry else 0,
                    failed.last_error,
                ),
            )
            tx.execute(SYNC_QUEUE, "DELETE FROM sync_queue WHERE key = ?", (item.key,))
        logger.warning(
            "Dead-lettered %s after %s attempts",
            item.type,
            item.retry_count,
            extra={"extra": {"key": item.key, "type": item.type, "last_error": last_error}},
        )
        return failed

    def count(self) -> int:
        with self._store.transaction(SYNC_QUEUE) as tx:
            row = tx.execute(SYNC_QUEUE, "SELECT COUNT(*) AS total FROM sync_queue").fetchone()
        return int(row["total"] if row else 0)

    def oldest_timestamp(self) -> int | None:
        with self._store.transaction(SYNC_QUEUE) as tx:
            row = tx.execute(SYNC_QUEUE, "SELECT MIN(timestamp) AS oldest FROM sync_queue").fetchone()
        return row["oldest"] if row and row["oldest"] is not None else None

    def pending_ids(self, action_types: Iterable[ActionType | str], tx: StoreTransaction | None = None) -> set[str]:
        """Entity ids that already have a pending entry under any of ``action_types``."""
        types = sorted({action_value(action_type) for action_type in action_types})
        if not types:
            return set()
        placeholders = ", ".join("?" for _ in types)
        sql = f"SELECT DISTINCT entity_id FROM sync_queue WHERE entity_id IS NOT NULL AND type IN ({placeholders})"
        if tx is not None:
            rows = tx.execute(SYNC_QUEUE, sql, types).fetchall()
        else:
            with self._store.transaction(SYNC_QUEUE) as own_tx:
                rows = own_tx.execute(SYNC_QUEUE, sql, types).fetchall()
        return {row["entity_id"] for row in rows}

    def drop_superseded(
        self,
        tx: StoreTransaction,
        action_types: Iterable[ActionType | str],
        entity_id: str,
        kept: Mapping[str, Any],
    ) -> int:
        """Deletes pending upserts of ``entity_id`` that are not newer than ``kept``."""
        types = sorted({action_value(action_type) for action_type in action_types})
        if not types:
            return 0
        placeholders = ", ".join("?" for _ in types)
        rows = tx.execute(
            SYNC_QUEUE,
            f"SELECT key, payload_json FROM sync_queue WHERE entity_id = ? AND type IN ({placeholders})",
            [entity_id, *types],
        ).fetchall()
        stale = [row["key"] for row in rows if compare_versions(json.loads(row["payload_json"]), kept) <= 0]
        for key in stale:
            tx.execute(SYNC_QUEUE, "DELETE FROM sync_queue WHERE key = ?", (key,))
        if stale:
            logger.info("Dropped %s queued upserts of %s superseded by the remote copy", len(stale), entity_id)
        return len(stale)


class SQLiteDeadLetterQueue:
    """Entries that exhausted their retries; only an operator moves them out."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    def list_failed(self) -> list[FailedSyncQueueItem]:
        with self._store.transaction(FAILED_SYNC_QUEUE) as tx:
            rows = tx.execute(FAILED_SYNC_QUEUE, "SELECT * FROM failed_sync_queue ORDER BY failed_at, key").fetchall()
        return [_row_to_failed(row) for row in rows]

    def get(self, key: int) -> FailedSyncQueueItem | None:
        with self._store.transaction(FAILED_SYNC_QUEUE) as tx:
            row = tx.execute(FAILED_SYNC_QUEUE, "SELECT * FROM failed_sync_queue WHERE key = ?", (key,)).fetchone()
        return _row_to_failed(row) if row else None

    def record_retry_failure(self, key: int, last_error: str) -> None:
        with self._store.transaction(FAILED_SYNC_QUEUE) as tx:
            tx.execute(
                FAILED_SYNC_QUEUE,
                """
                UPDATE failed_sync_queue
                SET last_error = ?, total_retries = total_retries + 1
                WHERE key = ?
                """,
                (last_error, key),
            )

    def delete(self, key: int) -> bool:
        with self._store.transaction(FAILED_SYNC_QUEUE) as tx:
            cursor = tx.execute(FAILED_SYNC_QUEUE, "DELETE FROM failed_sync_queue WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def delete_all(self) -> int:
        with self._store.transaction(FAILED_SYNC_QUEUE) as tx:
            cursor = tx.execute(FAILED_SYNC_QUEUE, "DELETE FROM failed_sync_queue")
        return cursor.rowcount

    def count(self) -> int:
        with self._store.transaction(FAILED_SYNC_QUEUE) as tx:
            row = tx.execute(FAILED_SYNC_QUEUE, "SELECT COUNT(*) AS total FROM failed_sync_queue").fetchone()
        return int(row["total"] if row else 0)
