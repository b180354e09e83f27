from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import replace
from pathlib import Path

from pos_sync.domain.models import SyncSettings
from pos_sync.infrastructure.local_config import LocalConfigStore

logger = logging.getLogger(__name__)


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def resolve_log_dir() -> Path:
    candidates: list[Path] = []
    env_dir = os.environ.get("POS_SYNC_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(project_root() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / "PosSync" / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            probe = candidate / "_write_test.tmp"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    fallback = project_root()
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def resolve_backup_dir(config_store: LocalConfigStore) -> Path:
    return config_store.base_dir / "backups"


def load_sync_settings(config_store: LocalConfigStore) -> SyncSettings:
    """``config.json`` values with the environment overrides applied on top."""
    settings = config_store.load_settings()
    raw_interval = os.environ.get("POS_SYNC_INTERVAL_SECONDS")
    if raw_interval:
        try:
            interval = float(raw_interval)
        except ValueError:
            logger.warning("Ignoring POS_SYNC_INTERVAL_SECONDS=%r", raw_interval)
        else:
            if interval > 0:
                settings = replace(settings, sync_interval_seconds=interval)
    env_db_path = os.environ.get("POS_SYNC_DB_PATH")
    if env_db_path:
        settings = replace(settings, db_path=env_db_path)
    return settings
