from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from pos_sync.bootstrap.container import build_container
from pos_sync.infrastructure.local_config import LocalConfigStore
from tests.e2e_sync.fakes import FakeConnectivity, pending_types


def _config(tmp_path: Path, **payload) -> LocalConfigStore:
    store = LocalConfigStore(tmp_path / "appdata")
    if payload:
        store.base_dir.mkdir(parents=True, exist_ok=True)
        store.config_path.write_text(json.dumps(payload), encoding="utf-8")
    return store


def test_build_container_smoke(tmp_path: Path, connection, clock) -> None:
    container = build_container(
        config_store=_config(tmp_path),
        connection=connection,
        connectivity=FakeConnectivity(),
        clock=clock,
    )

    report = container.init()

    assert container.gateway.simulation is True
    assert report.offline
    assert container.state.initialized
    assert len(container.state.all("users")) == 3
    assert pending_types(container.queue).count("ADD_PRODUCT") == 5
    assert container.backups.list_backups() == []

    container.teardown()
    assert not container.state.initialized


def test_complete_remote_config_builds_the_sheets_store(tmp_path: Path, connection) -> None:
    container = build_container(
        config_store=_config(tmp_path, sheets_spreadsheet_id="sheet-1", path_credentials_json="creds.json"),
        connection=connection,
        connectivity=FakeConnectivity(),
    )

    assert container.gateway.simulation is False
    assert container.remote_config.spreadsheet_id == "sheet-1"
    assert container.remote_config.device_id


def test_incomplete_remote_config_runs_in_simulation(
    tmp_path: Path, connection, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="pos_sync.bootstrap.container"):
        container = build_container(
            config_store=_config(tmp_path, sheets_spreadsheet_id="sheet-1"),
            connection=connection,
            connectivity=FakeConnectivity(),
        )

    assert container.gateway.simulation is True
    assert "Remote configuration is incomplete; running in simulation mode" in caplog.text


def test_settings_are_read_from_the_config_file(tmp_path: Path, connection) -> None:
    container = build_container(
        config_store=_config(tmp_path, remote_page_size=50, session_timeout_seconds=60),
        connection=connection,
        connectivity=FakeConnectivity(),
    )

    assert container.settings.remote_page_size == 50
    assert container.settings.session_timeout_seconds == 60
