from __future__ import annotations

import json
from pathlib import Path

import pytest

from pos_sync.core.errors import PersistenceError
from pos_sync.domain.action_types import ActionType
from pos_sync.infrastructure.backup import BackupService
from pos_sync.infrastructure.local_store import LocalStore
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteSyncQueue


def _fill(store: LocalStore) -> None:
    with store.transaction("products", "sales") as tx:
        tx.put("products", {"id": "p1", "stock": 3})
        tx.put("sales", {"id": "s1", "totalAmount": 10})


def test_backup_then_restore_replaces_entity_collections(
    store: LocalStore, queue: SQLiteSyncQueue, clock, tmp_path: Path
) -> None:
    _fill(store)
    service = BackupService(store, tmp_path, clock=clock)
    path = service.create_backup()
    with store.transaction("products", "sync_queue") as tx:
        tx.put("products", {"id": "p2", "stock": 1})
        queue.enqueue(tx, ActionType.ADD_PRODUCT, {"id": "p2"})

    restored = service.restore(path)

    assert restored["products"] == 1
    assert restored["sales"] == 1
    assert store.get_all("products") == [{"id": "p1", "stock": 3}]
    assert queue.count() == 1
    assert json.loads(path.read_text(encoding="utf-8"))["formatVersion"] == 1


def test_only_the_newest_backups_are_kept(store: LocalStore, clock, tmp_path: Path) -> None:
    service = BackupService(store, tmp_path, keep=2, clock=clock)

    paths = []
    for _ in range(3):
        paths.append(service.create_backup())
        clock.advance(seconds=1)

    assert service.list_backups() == paths[1:]


def test_unknown_backup_format_is_refused(store: LocalStore, tmp_path: Path) -> None:
    bogus = tmp_path / "pos-backup-bogus.json"
    bogus.write_text(json.dumps({"formatVersion": 99}), encoding="utf-8")

    with pytest.raises(PersistenceError, match="Unsupported"):
        BackupService(store, tmp_path).restore(bogus)
    with pytest.raises(PersistenceError, match="Cannot read"):
        BackupService(store, tmp_path).restore(tmp_path / "absent.json")
