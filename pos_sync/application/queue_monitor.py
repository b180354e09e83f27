from __future__ import annotations

import logging

from pos_sync.domain.sync_models import QueueStats
from pos_sync.domain.time_utils import Clock, to_epoch_ms, utc_now
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteDeadLetterQueue, SQLiteSyncQueue

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_MS = 10 * 60 * 1000


class QueueMonitor:
    """Queue depth and age of the oldest pending entry."""

    def __init__(
        self,
        queue: SQLiteSyncQueue,
        dead_letters: SQLiteDeadLetterQueue,
        *,
        clock: Clock = utc_now,
        stale_after_ms: int = DEFAULT_STALE_AFTER_MS,
    ) -> None:
        self._queue = queue
        self._dead_letters = dead_letters
        self._clock = clock
        self._stale_after_ms = stale_after_ms

    def stats(self) -> QueueStats:
        pending = self._queue.count()
        failed = self._dead_letters.count()
        oldest = self._queue.oldest_timestamp()
        age = max(0, to_epoch_ms(self._clock()) - oldest) if oldest is not None else None
        return QueueStats(
            sync_queue_size=pending,
            failed_queue_size=failed,
            total_size=pending + failed,
            oldest_item_age_ms=age,
        )

    def check(self) -> QueueStats:
        """Like ``stats`` but warns when entries are dead-lettered or stuck."""
        stats = self.stats()
        if stats.failed_queue_size:
            logger.warning("%s entries are waiting in the dead-letter queue", stats.failed_queue_size)
        if stats.oldest_item_age_ms is not None and stats.oldest_item_age_ms > self._stale_after_ms:
            logger.warning("Oldest pending sync entry is %s ms old", stats.oldest_item_age_ms)
        return stats
