from __future__ import annotations

import json
from typing import Any, Mapping

from pos_sync.domain.collections import MERGE_CONFLICTS
from pos_sync.domain.sync_models import MergeConflict
from pos_sync.infrastructure.local_store import LocalStore, StoreTransaction


class SQLiteMergeConflictLog:
    """Keeps the copy a merge discarded next to the copy it kept."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    def record(
        self,
        tx: StoreTransaction,
        *,
        entity_type: str,
        entity_id: str,
        discarded: Mapping[str, Any],
        kept: Mapping[str, Any],
        detected_at: str,
    ) -> int:
        cursor = tx.execute(
            MERGE_CONFLICTS,
            """
            INSERT INTO merge_conflicts (
                entity_type, entity_id, discarded_snapshot_json, kept_snapshot_json, detected_at
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (
                entity_type,
                entity_id,
                json.dumps(dict(discarded), ensure_ascii=False),
                json.dumps(dict(kept), ensure_ascii=False),
                detected_at,
            ),
        )
        return int(cursor.lastrowid)

    def list_conflicts(self, entity_type: str | None = None) -> list[MergeConflict]:
        sql = """
            SELECT id, entity_type, entity_id, discarded_snapshot_json, kept_snapshot_json, detected_at
            FROM merge_conflicts
        """
        params: tuple[Any, ...] = ()
        if entity_type is not None:
            sql += " WHERE entity_type = ?"
            params = (entity_type,)
        sql += " ORDER BY id ASC"
        with self._store.transaction(MERGE_CONFLICTS) as tx:
            rows = tx.execute(MERGE_CONFLICTS, sql, params).fetchall()
        return [
            MergeConflict(
                id=row["id"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                discarded=json.loads(row["discarded_snapshot_json"] or "{}"),
                kept=json.loads(row["kept_snapshot_json"] or "{}"),
                detected_at=row["detected_at"],
            )
            for row in rows
        ]

    def count_conflicts(self) -> int:
        with self._store.transaction(MERGE_CONFLICTS) as tx:
            row = tx.execute(MERGE_CONFLICTS, "SELECT COUNT(*) AS total FROM merge_conflicts").fetchone()
        return int(row["total"] if row else 0)

    def clear(self) -> int:
        with self._store.transaction(MERGE_CONFLICTS) as tx:
            return tx.execute(MERGE_CONFLICTS, "DELETE FROM merge_conflicts").rowcount
