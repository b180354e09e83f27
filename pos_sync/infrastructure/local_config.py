from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from pos_sync.domain.models import RemoteConfig, SyncSettings

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


def resolve_appdata_dir() -> Path:
    env_dir = os.environ.get("LOCALAPPDATA")
    if env_dir:
        base_dir = Path(env_dir)
    else:
        base_dir = Path.home() / ".local" / "share"
    return base_dir / "PosSync"


def _positive_number(payload: dict[str, Any], key: str, default: float) -> float:
    raw = payload.get(key)
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s=%r in %s", key, raw, CONFIG_FILENAME)
        return default
    return value if value > 0 else default


class LocalConfigStore:
    """JSON configuration of one device: remote sheet, credentials and sync tuning."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / CONFIG_FILENAME

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> RemoteConfig | None:
        payload = self._read_payload()
        if payload is None:
            return None
        spreadsheet_id = str(payload.get("sheets_spreadsheet_id", "")).strip()
        credentials_path = str(payload.get("path_credentials_json", "")).strip()
        device_id = self._ensure_device_id(payload)
        if not spreadsheet_id and not credentials_path:
            return None
        return RemoteConfig(spreadsheet_id=spreadsheet_id, credentials_path=credentials_path, device_id=device_id)

    def load_settings(self) -> SyncSettings:
        payload = self._read_payload() or {}
        defaults = SyncSettings()
        db_path = str(payload.get("db_path", "") or "").strip() or None
        return SyncSettings(
            sync_interval_seconds=_positive_number(payload, "sync_interval_seconds", defaults.sync_interval_seconds),
            max_retries=int(_positive_number(payload, "max_retries", defaults.max_retries)),
            remote_page_size=int(_positive_number(payload, "remote_page_size", defaults.remote_page_size)),
            push_timeout_seconds=_positive_number(payload, "push_timeout_seconds", defaults.push_timeout_seconds),
            push_workers=int(_positive_number(payload, "push_workers", defaults.push_workers)),
            session_timeout_seconds=_positive_number(
                payload, "session_timeout_seconds", defaults.session_timeout_seconds
            ),
            db_path=db_path,
        )

    def save(self, config: RemoteConfig) -> RemoteConfig:
        payload = self._read_payload() or {}
        payload.update(
            {
                "sheets_spreadsheet_id": config.spreadsheet_id,
                "path_credentials_json": config.credentials_path,
                "device_id": config.device_id or self._generate_device_id(),
            }
        )
        self._write_payload(payload)
        return RemoteConfig(
            spreadsheet_id=payload["sheets_spreadsheet_id"],
            credentials_path=payload["path_credentials_json"],
            device_id=payload["device_id"],
        )

    def device_id(self) -> str:
        payload = self._read_payload() or {}
        return self._ensure_device_id(payload)

    def _ensure_device_id(self, payload: dict[str, Any]) -> str:
        device_id = str(payload.get("device_id", "")).strip()
        if not device_id:
            device_id = self._generate_device_id()
            payload["device_id"] = device_id
            self._write_payload(payload)
        return device_id

    def _read_payload(self) -> dict[str, Any] | None:
        if not self._config_path.exists():
            return None
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("Could not read %s: %s", self._config_path, exc)
            return None
        if not isinstance(payload, dict):
            logger.error("Ignoring %s: expected a JSON object", self._config_path)
            return None
        return payload

    def _write_payload(self, payload: dict[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    @staticmethod
    def _generate_device_id() -> str:
        return str(uuid.uuid4())
