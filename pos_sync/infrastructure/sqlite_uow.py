from __future__ import annotations

import contextlib
import itertools
import sqlite3
from collections.abc import Iterator

_savepoint_ids = itertools.count(1)


def is_locked_error(error: BaseException) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error).lower()


@contextlib.contextmanager
def atomic(connection: sqlite3.Connection) -> Iterator[None]:
    """Runs the block in one SQLite transaction; nested blocks become SAVEPOINTs.

    The outer level takes the write lock up front (``BEGIN IMMEDIATE``) so the
    stock read-modify-write of a sale cannot interleave with another writer
    on the same database file.
    """
    if not connection.in_transaction:
        connection.execute("BEGIN IMMEDIATE")
        try:
            yield
            connection.commit()
        except BaseException:
            connection.rollback()
            raise
        return

    savepoint = f"store_sp_{next(_savepoint_ids)}"
    connection.execute(f"SAVEPOINT {savepoint}")
    try:
        yield
    except BaseException:
        connection.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
        connection.execute(f"RELEASE SAVEPOINT {savepoint}")
        raise
    connection.execute(f"RELEASE SAVEPOINT {savepoint}")
