from __future__ import annotations

import logging
import sqlite3
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from pos_sync.application.app_state import AppState
from pos_sync.application.remote_gateway import RemoteGateway
from pos_sync.application.use_cases import MutationExecutor
from pos_sync.bootstrap.container import AppContainer, build_container
from pos_sync.core.metrics import metrics_registry
from pos_sync.core.observability import set_correlation_id, set_result_id
from pos_sync.infrastructure.local_config import LocalConfigStore
from pos_sync.infrastructure.local_store import LocalStore
from pos_sync.infrastructure.merge_conflicts_sqlite import SQLiteMergeConflictLog
from pos_sync.infrastructure.migrations import run_migrations
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteDeadLetterQueue, SQLiteSyncQueue
from tests.e2e_sync.fakes import FakeConnectivity, FixedClock, InMemoryRemoteStore, SequentialIds

START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("POS_SYNC_DB_PATH", raising=False)
    monkeypatch.delenv("POS_SYNC_INTERVAL_SECONDS", raising=False)
    monkeypatch.setenv("POS_SYNC_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "localappdata"))
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(threading, "excepthook", threading.excepthook)
    metrics_registry.reset()
    set_correlation_id(None)
    set_result_id(None)


@pytest.fixture(autouse=True)
def _restore_root_logging() -> None:
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler, RotatingFileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def connection() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def id_factory() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def store(connection: sqlite3.Connection) -> LocalStore:
    return LocalStore(connection)


@pytest.fixture
def queue(store: LocalStore, clock: FixedClock) -> SQLiteSyncQueue:
    return SQLiteSyncQueue(store, clock)


@pytest.fixture
def dead_letter_queue(store: LocalStore) -> SQLiteDeadLetterQueue:
    return SQLiteDeadLetterQueue(store)


@pytest.fixture
def conflict_log(store: LocalStore) -> SQLiteMergeConflictLog:
    return SQLiteMergeConflictLog(store)


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def gateway(remote: InMemoryRemoteStore, clock: FixedClock) -> RemoteGateway:
    return RemoteGateway(remote, clock=clock)


@pytest.fixture
def state(clock: FixedClock) -> AppState:
    return AppState(clock=clock)


@pytest.fixture
def executor(store: LocalStore, queue: SQLiteSyncQueue, state: AppState, clock: FixedClock, id_factory: SequentialIds) -> MutationExecutor:
    return MutationExecutor(store, queue, state, clock=clock, id_factory=id_factory)


@pytest.fixture
def app(
    tmp_path: Path,
    connection: sqlite3.Connection,
    remote: InMemoryRemoteStore,
    clock: FixedClock,
    id_factory: SequentialIds,
) -> AppContainer:
    """Fully wired container over the in-memory remote, merged and seeded."""
    container = build_container(
        config_store=LocalConfigStore(tmp_path / "appdata"),
        connection=connection,
        remote_store=remote,
        connectivity=FakeConnectivity(),
        clock=clock,
        id_factory=id_factory,
    )
    container.init()
    yield container
    container.teardown()
