from __future__ import annotations

import json
from pathlib import Path

from pos_sync.bootstrap import settings
from pos_sync.infrastructure.local_config import LocalConfigStore


def test_resolve_log_dir_uses_env_path(monkeypatch, tmp_path) -> None:
    env_dir = tmp_path / "env_logs"
    monkeypatch.setenv("POS_SYNC_LOG_DIR", str(env_dir))

    resolved = settings.resolve_log_dir()

    assert resolved == env_dir
    assert resolved.exists()


def test_resolve_log_dir_falls_back_to_project_root(monkeypatch, tmp_path) -> None:
    project_root = tmp_path / "project"
    monkeypatch.delenv("POS_SYNC_LOG_DIR", raising=False)
    monkeypatch.setattr(settings, "project_root", lambda: project_root)
    monkeypatch.setattr(settings.tempfile, "gettempdir", lambda: str(tmp_path / "tmpbase"))

    original_mkdir = Path.mkdir

    def failing_candidate_mkdir(self: Path, parents: bool = False, exist_ok: bool = False):
        if self in {project_root / "logs", tmp_path / "tmpbase" / "PosSync" / "logs"}:
            raise OSError("cannot create candidate")
        return original_mkdir(self, parents=parents, exist_ok=exist_ok)

    monkeypatch.setattr(Path, "mkdir", failing_candidate_mkdir)

    resolved = settings.resolve_log_dir()

    assert resolved == project_root
    assert resolved.exists()


def test_sync_settings_come_from_config_then_environment(monkeypatch, tmp_path) -> None:
    store = LocalConfigStore(tmp_path)
    store.config_path.write_text(
        json.dumps({"sync_interval_seconds": 12, "max_retries": 3, "db_path": "from-config.db"}),
        encoding="utf-8",
    )

    from_config = settings.load_sync_settings(store)
    assert (from_config.sync_interval_seconds, from_config.max_retries, from_config.db_path) == (12, 3, "from-config.db")

    monkeypatch.setenv("POS_SYNC_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("POS_SYNC_DB_PATH", "from-env.db")
    overridden = settings.load_sync_settings(store)
    assert (overridden.sync_interval_seconds, overridden.db_path) == (2.5, "from-env.db")


def test_invalid_interval_override_is_ignored(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("POS_SYNC_INTERVAL_SECONDS", "soon")

    assert settings.load_sync_settings(LocalConfigStore(tmp_path)).sync_interval_seconds == 5.0


def test_backups_live_next_to_the_config(tmp_path) -> None:
    assert settings.resolve_backup_dir(LocalConfigStore(tmp_path)) == tmp_path / "backups"
