from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pos_sync.core.errors import PersistenceError
from pos_sync.domain.collections import SYNCABLE_COLLECTIONS
from pos_sync.domain.time_utils import Clock, to_iso, utc_now
from pos_sync.infrastructure.local_store import LocalStore

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = 1
DEFAULT_KEEP = 5
_PREFIX = "pos-backup-"


class BackupService:
    """JSON snapshots of every entity collection; only the newest ``keep`` files survive."""

    def __init__(self, store: LocalStore, backup_dir: Path, *, keep: int = DEFAULT_KEEP, clock: Clock = utc_now) -> None:
        self._store = store
        self._backup_dir = backup_dir
        self._keep = keep
        self._clock = clock

    def create_backup(self) -> Path:
        names = [spec.name for spec in SYNCABLE_COLLECTIONS]
        with self._store.transaction(*names) as tx:
            collections = {name: tx.get_all(name) for name in names}
        now = self._clock()
        document = {
            "formatVersion": BACKUP_FORMAT_VERSION,
            "createdAt": to_iso(now),
            "collections": collections,
        }
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        path = self._backup_dir / f"{_PREFIX}{now.strftime('%Y%m%dT%H%M%S%f')}.json"
        path.write_text(json.dumps(document, ensure_ascii=False, indent=1), encoding="utf-8")
        logger.info("Backup written to %s", path, extra={"extra": {"records": sum(map(len, collections.values()))}})
        self._prune()
        return path

    def list_backups(self) -> list[Path]:
        if not self._backup_dir.exists():
            return []
        return sorted(self._backup_dir.glob(f"{_PREFIX}*.json"))

    def restore(self, path: Path) -> dict[str, int]:
        """Replaces the entity collections with the snapshot; the sync queues are left untouched."""
        document = self._read(path)
        collections: dict[str, Any] = document.get("collections", {})
        names = [spec.name for spec in SYNCABLE_COLLECTIONS]
        restored: dict[str, int] = {}
        with self._store.transaction(*names) as tx:
            for name in names:
                records = collections.get(name, [])
                tx.clear(name)
                for record in records:
                    tx.put(name, record)
                restored[name] = len(records)
        logger.info("Restored backup %s", path, extra={"extra": restored})
        return restored

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot read backup {path}: {exc}") from exc
        if not isinstance(document, dict) or document.get("formatVersion") != BACKUP_FORMAT_VERSION:
            raise PersistenceError(f"Unsupported backup format in {path}")
        return document

    def _prune(self) -> None:
        backups = self.list_backups()
        for stale in backups[: max(0, len(backups) - self._keep)]:
            try:
                stale.unlink()
            except OSError as exc:
                logger.warning("Could not delete old backup %s: %s", stale, exc)
