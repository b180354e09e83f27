from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from pos_sync.application.app_state import AppState
from pos_sync.application.dead_letter_service import DeadLetterService
from pos_sync.application.integrity import IntegrityChecker
from pos_sync.application.merge_engine import MergeEngine
from pos_sync.application.queue_monitor import QueueMonitor
from pos_sync.application.remote_gateway import RemoteGateway
from pos_sync.application.sync_processor import SyncProcessor
from pos_sync.application.use_cases import (
    MutationExecutor,
    ProductUseCases,
    SaleUseCases,
    SessionUseCases,
    SettingsUseCases,
    ShiftUseCases,
    StockRequestUseCases,
    UserUseCases,
    VoidUseCases,
)
from pos_sync.application.use_cases.mutations import IdFactory
from pos_sync.bootstrap.settings import load_sync_settings, resolve_backup_dir
from pos_sync.domain.collections import SYNCABLE_COLLECTIONS
from pos_sync.domain.ids import generate_id
from pos_sync.domain.models import RemoteConfig, SyncSettings
from pos_sync.domain.ports import ConnectivityProbe, RemoteStore
from pos_sync.domain.sync_models import MergeReport
from pos_sync.domain.time_utils import Clock, utc_now
from pos_sync.infrastructure.backup import BackupService
from pos_sync.infrastructure.connectivity import SocketConnectivityProbe
from pos_sync.infrastructure.db import get_connection
from pos_sync.infrastructure.local_config import LocalConfigStore
from pos_sync.infrastructure.local_store import LocalStore
from pos_sync.infrastructure.merge_conflicts_sqlite import SQLiteMergeConflictLog
from pos_sync.infrastructure.migrations import run_migrations
from pos_sync.infrastructure.seed import seed_if_empty
from pos_sync.infrastructure.sheets_client import SheetsClient
from pos_sync.infrastructure.sheets_remote_store import SheetsRemoteStore
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteDeadLetterQueue, SQLiteSyncQueue

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    settings: SyncSettings
    remote_config: RemoteConfig | None
    clock: Clock
    store: LocalStore
    queue: SQLiteSyncQueue
    dead_letter_queue: SQLiteDeadLetterQueue
    conflict_log: SQLiteMergeConflictLog
    gateway: RemoteGateway
    processor: SyncProcessor
    dead_letters: DeadLetterService
    merge_engine: MergeEngine
    state: AppState
    executor: MutationExecutor
    session: SessionUseCases
    users: UserUseCases
    products: ProductUseCases
    stock_requests: StockRequestUseCases
    sales: SaleUseCases
    voids: VoidUseCases
    shifts: ShiftUseCases
    business_settings: SettingsUseCases
    integrity: IntegrityChecker
    queue_monitor: QueueMonitor
    backups: BackupService
    connectivity: ConnectivityProbe

    def init(self) -> MergeReport:
        """Startup: merge remote and local data, seed an empty install, load the state."""
        run = self.merge_engine.run()
        records = run.records
        if seed_if_empty(self.store, self.queue, self.clock):
            records = {spec.name: self.store.get_all(spec.name) for spec in SYNCABLE_COLLECTIONS}
        self.state.init(records)
        return run.report

    def teardown(self) -> None:
        self.processor.stop(timeout=self.settings.push_timeout_seconds)
        self.state.teardown()
        self.store.close()
        logger.info("Application shut down")


def build_container(
    *,
    config_store: LocalConfigStore | None = None,
    connection: sqlite3.Connection | None = None,
    remote_store: RemoteStore | None = None,
    connectivity: ConnectivityProbe | None = None,
    clock: Clock = utc_now,
    id_factory: IdFactory = generate_id,
) -> AppContainer:
    config_store = config_store or LocalConfigStore()
    settings = load_sync_settings(config_store)
    remote_config = config_store.load()

    if connection is None:
        connection = get_connection(Path(settings.db_path) if settings.db_path else None)
    applied = run_migrations(connection)
    if applied:
        logger.info("Applied migrations %s", applied)

    if remote_store is None and remote_config is not None:
        if remote_config.is_complete:
            client = SheetsClient(request_timeout_seconds=settings.push_timeout_seconds)
            remote_store = SheetsRemoteStore(client, remote_config)
        else:
            logger.warning("Remote configuration is incomplete; running in simulation mode")

    store = LocalStore(connection)
    queue = SQLiteSyncQueue(store, clock)
    dead_letter_queue = SQLiteDeadLetterQueue(store)
    conflict_log = SQLiteMergeConflictLog(store)
    gateway = RemoteGateway(remote_store, clock=clock)
    processor = SyncProcessor(
        queue,
        gateway,
        max_retries=settings.max_retries,
        interval_seconds=settings.sync_interval_seconds,
        push_timeout_seconds=settings.push_timeout_seconds,
        max_workers=settings.push_workers,
        clock=clock,
    )
    merge_engine = MergeEngine(
        store,
        gateway,
        queue,
        conflict_log,
        page_size=settings.remote_page_size,
        clock=clock,
    )
    state = AppState(clock=clock, session_timeout_seconds=settings.session_timeout_seconds)
    executor = MutationExecutor(store, queue, state, clock=clock, id_factory=id_factory)

    return AppContainer(
        settings=settings,
        remote_config=remote_config,
        clock=clock,
        store=store,
        queue=queue,
        dead_letter_queue=dead_letter_queue,
        conflict_log=conflict_log,
        gateway=gateway,
        processor=processor,
        dead_letters=DeadLetterService(dead_letter_queue, gateway),
        merge_engine=merge_engine,
        state=state,
        executor=executor,
        session=SessionUseCases(state),
        users=UserUseCases(executor),
        products=ProductUseCases(executor),
        stock_requests=StockRequestUseCases(executor),
        sales=SaleUseCases(executor),
        voids=VoidUseCases(executor),
        shifts=ShiftUseCases(executor),
        business_settings=SettingsUseCases(executor),
        integrity=IntegrityChecker(store, executor),
        queue_monitor=QueueMonitor(queue, dead_letter_queue, clock=clock),
        backups=BackupService(store, resolve_backup_dir(config_store), clock=clock),
        connectivity=connectivity or SocketConnectivityProbe(),
    )
