from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import asdict, replace

from pos_sync.application.remote_gateway import RemoteGateway
from pos_sync.core.metrics import (
    SYNC_DEAD_LETTERED,
    SYNC_FAILED,
    SYNC_PASS_SKIPPED,
    SYNC_PUSHED,
    metrics_registry,
    timed,
)
from pos_sync.core.observability import OperationContext, log_event
from pos_sync.domain.sync_models import PushOutcome, SyncPassReport, SyncQueueItem
from pos_sync.domain.time_utils import Clock, to_epoch_ms, utc_now
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteSyncQueue

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_PUSH_TIMEOUT_SECONDS = 30.0
DEFAULT_PUSH_WORKERS = 8


class SyncProcessor:
    """Drains the sync queue into the remote gateway on a fixed interval.

    Passes never overlap: a tick that finds a pass in progress is skipped, not
    queued. All entries of a pass are pushed concurrently; their results are
    written back to the local store from the thread running the pass.
    """

    def __init__(
        self,
        queue: SQLiteSyncQueue,
        gateway: RemoteGateway,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        push_timeout_seconds: float = DEFAULT_PUSH_TIMEOUT_SECONDS,
        max_workers: int = DEFAULT_PUSH_WORKERS,
        clock: Clock = utc_now,
        online: bool = True,
    ) -> None:
        self._queue = queue
        self._gateway = gateway
        self._max_retries = max_retries
        self._interval_seconds = interval_seconds
        self._push_timeout_seconds = push_timeout_seconds
        self._max_workers = max(1, max_workers)
        self._clock = clock
        self._pass_guard = threading.Lock()
        self._online = threading.Event()
        if online:
            self._online.set()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_online(self) -> bool:
        return self._online.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_busy(self) -> bool:
        return self._pass_guard.locked()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-processor", daemon=True)
        self._thread.start()
        logger.info("Sync processor started (interval=%ss)", self._interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        self._wake_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None
        logger.info("Sync processor stopped")

    def set_online(self, online: bool) -> None:
        was_online = self._online.is_set()
        if online:
            self._online.set()
        else:
            self._online.clear()
        if online and not was_online:
            logger.info("Connectivity restored; scheduling an immediate sync pass")
            self._wake_event.set()
        elif was_online and not online:
            logger.info("Connectivity lost; sync passes paused")

    def run_once(self) -> SyncPassReport:
        if not self._online.is_set():
            return SyncPassReport.skipped_pass("offline")
        if not self._pass_guard.acquire(blocking=False):
            metrics_registry.increment(SYNC_PASS_SKIPPED)
            logger.debug("Sync pass skipped: previous pass still running")
            return SyncPassReport.skipped_pass("busy")
        try:
            with OperationContext("sync_pass", logger):
                return self._run_pass()
        finally:
            self._pass_guard.release()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("Sync pass crashed; retrying on the next tick")
            self._wake_event.wait(self._interval_seconds)
            self._wake_event.clear()

    @timed("sync.pass")
    def _run_pass(self) -> SyncPassReport:
        items = self._queue.list_pending()
        if not items:
            return SyncPassReport()
        outcomes = self._push_all(items)
        succeeded = failed = dead_lettered = 0
        for outcome in outcomes:
            if outcome.success:
                self._queue.delete(outcome.key)
                succeeded += 1
                continue
            failed += 1
            if self._record_failure(outcome):
                dead_lettered += 1
        metrics_registry.increment(SYNC_PUSHED, succeeded)
        metrics_registry.increment(SYNC_FAILED, failed)
        metrics_registry.increment(SYNC_DEAD_LETTERED, dead_lettered)
        report = SyncPassReport(
            processed=len(items),
            succeeded=succeeded,
            failed=failed,
            dead_lettered=dead_lettered,
        )
        log_event(logger, "sync_pass_completed", asdict(report))
        return report

    def _push_all(self, items: list[SyncQueueItem]) -> list[PushOutcome]:
        executor = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(items)),
            thread_name_prefix="sync-push",
        )
        try:
            futures = [(item, executor.submit(self._gateway.deliver, item.type, item.payload)) for item in items]
            # One deadline covers the whole batch.
            _, not_done = wait([future for _, future in futures], timeout=self._push_timeout_seconds)
            outcomes: list[PushOutcome] = []
            for item, future in futures:
                if future in not_done:
                    future.cancel()
                    outcomes.append(
                        PushOutcome(item.key, False, f"push timed out after {self._push_timeout_seconds}s")
                    )
                    continue
                try:
                    result = future.result()
                except Exception as exc:  # noqa: BLE001
                    outcomes.append(PushOutcome(item.key, False, f"{type(exc).__name__}: {exc}"))
                else:
                    outcomes.append(PushOutcome(item.key, result.ok, result.error or (None if result.ok else "remote push failed")))
            return outcomes
        finally:
            # A hung push keeps its worker; the pass itself must not wait for it.
            executor.shutdown(wait=False, cancel_futures=True)

    def _record_failure(self, outcome: PushOutcome) -> bool:
        current = self._queue.get(outcome.key)
        if current is None:
            return False
        retry_count = current.retry_count + 1
        if retry_count >= self._max_retries:
            self._queue.move_to_dead_letter(
                replace(current, retry_count=retry_count),
                last_error=outcome.error or "remote push failed",
                failed_at_ms=to_epoch_ms(self._clock()),
            )
            return True
        self._queue.update_retry_count(outcome.key, retry_count)
        logger.info(
            "Push of %s failed; retry %s/%s scheduled",
            current.type,
            retry_count,
            self._max_retries,
            extra={"extra": {"queue_key": current.key, "action_type": current.type, "error": outcome.error}},
        )
        return False

