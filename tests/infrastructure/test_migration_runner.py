from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from pos_sync.infrastructure.migrations import MigrationRunner, run_migrations


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def test_applies_every_migration_once() -> None:
    conn = sqlite3.connect(":memory:")

    assert run_migrations(conn) == [1, 2]
    assert run_migrations(conn) == []
    assert {"products", "sync_queue", "failed_sync_queue", "merge_conflicts"} <= _tables(conn)
    assert conn.execute("PRAGMA user_version").fetchone()[0] == 2


def test_rollback_and_status() -> None:
    conn = sqlite3.connect(":memory:")
    runner = MigrationRunner(conn)
    runner.apply_all()

    assert runner.rollback() == [2]
    assert "merge_conflicts" not in _tables(conn)
    assert [entry.applied for entry in runner.status()] == [True, False]
    assert runner.missing_tables() == ["merge_conflicts"]
    assert conn.execute("PRAGMA user_version").fetchone()[0] == 1


def test_missing_down_script_is_an_error(tmp_path: Path) -> None:
    (tmp_path / "001_only_up.up.sql").write_text("CREATE TABLE t (id TEXT);", encoding="utf-8")

    with pytest.raises(FileNotFoundError):
        MigrationRunner(sqlite3.connect(":memory:"), tmp_path)


def test_edited_scripts_are_reported_as_drifted(tmp_path: Path) -> None:
    up = tmp_path / "001_queue.up.sql"
    up.write_text("CREATE TABLE sync_queue (key INTEGER PRIMARY KEY);", encoding="utf-8")
    (tmp_path / "001_queue.down.sql").write_text("DROP TABLE sync_queue;", encoding="utf-8")
    conn = sqlite3.connect(":memory:")
    MigrationRunner(conn, tmp_path).apply_all()

    up.write_text("CREATE TABLE sync_queue (key INTEGER PRIMARY KEY, type TEXT);", encoding="utf-8")
    runner = MigrationRunner(conn, tmp_path)

    assert runner.apply_all() == []
    [status] = runner.status()
    assert status.applied and status.drifted
    assert "products" in runner.missing_tables()


def test_rollback_needs_a_positive_step_count() -> None:
    with pytest.raises(ValueError):
        MigrationRunner(sqlite3.connect(":memory:")).rollback(0)
