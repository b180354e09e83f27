from __future__ import annotations

import logging

from pos_sync.application.remote_gateway import RemoteGateway
from pos_sync.core.errors import InvalidStateTransitionError, NotFoundError
from pos_sync.core.observability import OperationContext
from pos_sync.domain.sync_models import FailedSyncQueueItem, RetryAllResult
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteDeadLetterQueue

logger = logging.getLogger(__name__)


class DeadLetterService:
    """Operator actions on entries the sync processor gave up on.

    Nothing here moves an entry back to the live queue: a retry pushes it
    directly and either removes it or leaves it with the new error.
    """

    def __init__(self, dead_letters: SQLiteDeadLetterQueue, gateway: RemoteGateway) -> None:
        self._dead_letters = dead_letters
        self._gateway = gateway

    def list_failed(self) -> list[FailedSyncQueueItem]:
        return self._dead_letters.list_failed()

    def count(self) -> int:
        return self._dead_letters.count()

    def retry(self, key: int) -> bool:
        item = self._dead_letters.get(key)
        if item is None:
            raise NotFoundError(f"Dead-lettered entry {key} does not exist")
        if not item.can_retry:
            raise InvalidStateTransitionError(f"Dead-lettered entry {key} is marked as not retryable")
        with OperationContext("dead_letter_retry", logger):
            return self._retry_item(item)

    def retry_all(self) -> RetryAllResult:
        succeeded = failed = 0
        with OperationContext("dead_letter_retry_all", logger):
            for item in self._dead_letters.list_failed():
                if item.can_retry and self._retry_item(item):
                    succeeded += 1
                else:
                    failed += 1
        logger.info("Dead-letter retry-all finished: %s succeeded, %s failed", succeeded, failed)
        return RetryAllResult(succeeded=succeeded, failed=failed)

    def delete(self, key: int) -> bool:
        deleted = self._dead_letters.delete(key)
        if deleted:
            logger.info("Deleted dead-lettered entry %s", key)
        return deleted

    def delete_all(self) -> int:
        deleted = self._dead_letters.delete_all()
        logger.info("Cleared %s dead-lettered entries", deleted)
        return deleted

    def _retry_item(self, item: FailedSyncQueueItem) -> bool:
        try:
            result = self._gateway.deliver(item.type, item.payload)
            ok, error = result.ok, result.error
        except Exception as exc:  # noqa: BLE001
            ok, error = False, f"{type(exc).__name__}: {exc}"
        if ok:
            self._dead_letters.delete(item.key)
            logger.info("Dead-lettered %s %s delivered on manual retry", item.type, item.key)
            return True
        self._dead_letters.record_retry_failure(item.key, error or "remote push failed")
        return False
