from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pos_sync.core.errors import DatabaseLockedError, PersistenceError
from pos_sync.domain.collections import ALL_COLLECTIONS, ENTITY_COLLECTIONS
from pos_sync.infrastructure.sqlite_uow import atomic, is_locked_error

logger = logging.getLogger(__name__)


def _dump(record: Mapping[str, Any]) -> str:
    return json.dumps(dict(record), ensure_ascii=False, separators=(",", ":"))


class StoreTransaction:
    """Handle passed to the body of ``LocalStore.transaction``.

    Only the collections declared when the transaction was opened can be
    touched; anything else raises ``PersistenceError`` so an operation cannot
    write outside the scope it asked for.
    """

    def __init__(self, connection: sqlite3.Connection, collections: frozenset[str]) -> None:
        self._connection = connection
        self._collections = collections

    @property
    def collections(self) -> frozenset[str]:
        return self._collections

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        self._require_entity(collection)
        row = self._connection.execute(f"SELECT data FROM {collection} WHERE id = ?", (key,)).fetchone()
        return json.loads(row["data"]) if row else None

    def exists(self, collection: str, key: str) -> bool:
        self._require_entity(collection)
        row = self._connection.execute(f"SELECT 1 FROM {collection} WHERE id = ?", (key,)).fetchone()
        return row is not None

    def put(self, collection: str, record: Mapping[str, Any]) -> None:
        self._require_entity(collection)
        record_id = record.get("id")
        if not record_id:
            raise PersistenceError(f"Cannot store a record without id in '{collection}'")
        self._connection.execute(
            f"""
            INSERT INTO {collection} (id, data) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """,
            (str(record_id), _dump(record)),
        )

    def delete(self, collection: str, key: str) -> bool:
        self._require_entity(collection)
        cursor = self._connection.execute(f"DELETE FROM {collection} WHERE id = ?", (key,))
        return cursor.rowcount > 0

    def get_all(self, collection: str) -> list[dict[str, Any]]:
        self._require_entity(collection)
        rows = self._connection.execute(f"SELECT data FROM {collection} ORDER BY rowid").fetchall()
        return [json.loads(row["data"]) for row in rows]

    def get_all_keys(self, collection: str) -> list[str]:
        self._require_entity(collection)
        rows = self._connection.execute(f"SELECT id FROM {collection} ORDER BY rowid").fetchall()
        return [row["id"] for row in rows]

    def clear(self, collection: str) -> int:
        self._require_entity(collection)
        return self._connection.execute(f"DELETE FROM {collection}").rowcount

    def execute(self, collection: str, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        """Raw SQL against a declared collection, used by the queue and conflict repositories."""
        self._require(collection)
        return self._connection.execute(sql, tuple(params))

    def _require(self, collection: str) -> None:
        if collection not in self._collections:
            raise PersistenceError(f"Collection '{collection}' is not part of this transaction")

    def _require_entity(self, collection: str) -> None:
        self._require(collection)
        if collection not in ENTITY_COLLECTIONS:
            raise PersistenceError(f"'{collection}' is not an entity collection")


class LocalStore:
    """Named collections over SQLite with atomic multi-collection transactions.

    One connection is shared by every thread; a re-entrant lock serialises
    transactions, so a transaction opened inside another on the same thread
    becomes a savepoint of the outer one.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    @contextlib.contextmanager
    def transaction(self, *collections: str) -> Iterator[StoreTransaction]:
        declared = self._validate(collections)
        with self._lock:
            try:
                with atomic(self._connection):
                    yield StoreTransaction(self._connection, declared)
            except sqlite3.Error as exc:
                logger.error("Local store transaction failed on %s: %s", sorted(declared), exc)
                if is_locked_error(exc):
                    raise DatabaseLockedError(f"Local database is locked by another process: {exc}") from exc
                raise PersistenceError(f"Local store transaction failed: {exc}") from exc

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self.transaction(collection) as tx:
            return tx.get(collection, key)

    def get_all(self, collection: str) -> list[dict[str, Any]]:
        with self.transaction(collection) as tx:
            return tx.get_all(collection)

    def get_all_keys(self, collection: str) -> list[str]:
        with self.transaction(collection) as tx:
            return tx.get_all_keys(collection)

    def count(self, collection: str) -> int:
        with self.transaction(collection) as tx:
            row = tx.execute(collection, f"SELECT COUNT(*) AS total FROM {collection}").fetchone()
        return int(row["total"] if row else 0)

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    @staticmethod
    def _validate(collections: Iterable[str]) -> frozenset[str]:
        declared = frozenset(collections)
        if not declared:
            raise PersistenceError("A transaction must declare at least one collection")
        unknown = declared - ALL_COLLECTIONS
        if unknown:
            raise PersistenceError(f"Unknown collections: {', '.join(sorted(unknown))}")
        return declared
