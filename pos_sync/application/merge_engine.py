from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from pos_sync.application.remote_gateway import RemoteGateway, upsert_actions_for
from pos_sync.core.metrics import (
    MERGE_CONFLICTS,
    MERGE_DUPLICATES_REMOVED,
    MERGE_REENQUEUED,
    MERGE_STALE_DROPPED,
    metrics_registry,
    timed,
)
from pos_sync.core.observability import OperationContext
from pos_sync.core.operational_logging import log_operational_error
from pos_sync.domain.collections import (
    MERGE_CONFLICTS as MERGE_CONFLICTS_TABLE,
    PRODUCT_SALE_LOGS,
    SYNC_QUEUE,
    SYNCABLE_COLLECTIONS,
    CollectionSpec,
)
from pos_sync.domain.dedupe import collapse_duplicates
from pos_sync.domain.time_utils import Clock, to_iso, utc_now
from pos_sync.domain.versioning import compare_versions
from pos_sync.infrastructure.local_store import LocalStore
from pos_sync.infrastructure.merge_conflicts_sqlite import SQLiteMergeConflictLog
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteSyncQueue
from pos_sync.domain.sync_models import CollectionMergeReport, MergeReport

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000

Record = dict[str, Any]


@dataclass(frozen=True)
class MergeRun:
    report: MergeReport
    records: dict[str, list[Record]] = field(default_factory=dict)


class MergeEngine:
    """Reconciles each local collection with its remote copy.

    Remote wins unless the local copy is newer by version, then by
    ``updatedAt``. Local winners and local-only records are queued for upload;
    the losing copy of every real disagreement goes to the conflict log.
    Re-running the engine is safe: records already waiting in the queue are
    not queued twice.
    """

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        queue: SQLiteSyncQueue,
        conflict_log: SQLiteMergeConflictLog,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Clock = utc_now,
        collections: Iterable[CollectionSpec] = SYNCABLE_COLLECTIONS,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._store = store
        self._gateway = gateway
        self._queue = queue
        self._conflict_log = conflict_log
        self._page_size = page_size
        self._clock = clock
        self._collections = tuple(collections)

    @timed("merge.run")
    def run(self) -> MergeRun:
        reports: list[CollectionMergeReport] = []
        records: dict[str, list[Record]] = {}
        with OperationContext("merge", logger):
            for spec in self._collections:
                report, merged = self.merge_collection(spec)
                reports.append(report)
                records[spec.name] = merged
        merge_report = MergeReport(collections=tuple(reports))
        logger.info(
            "Merge finished: %s re-enqueued, offline collections=%s",
            merge_report.total_reenqueued,
            merge_report.offline_collections,
        )
        return MergeRun(report=merge_report, records=records)

    def merge_collection(self, spec: CollectionSpec) -> tuple[CollectionMergeReport, list[Record]]:
        remote = self._fetch_remote(spec)
        if remote is None:
            local = self._store.get_all(spec.name)
            return (
                CollectionMergeReport(
                    collection=spec.name,
                    remote_count=0,
                    local_count=len(local),
                    merged_count=len(local),
                    used_remote=False,
                ),
                local,
            )

        detected_at = to_iso(self._clock())
        upsert_types = upsert_actions_for(spec.remote_table)
        with self._store.transaction(spec.name, SYNC_QUEUE, MERGE_CONFLICTS_TABLE) as tx:
            local = tx.get_all(spec.name)
            merged: dict[str, Record] = {}
            for row in remote:
                row_id = row.get("id")
                if row_id:
                    merged[str(row_id)] = row
            to_upload: list[str] = []
            conflicts = stale_dropped = 0
            for record in local:
                record_id = str(record.get("id", ""))
                if not record_id:
                    continue
                remote_copy = merged.get(record_id)
                if remote_copy is None:
                    merged[record_id] = record
                    to_upload.append(record_id)
                    continue
                local_wins = False
                if record != remote_copy:
                    local_wins = compare_versions(record, remote_copy) > 0
                    winner, loser = (record, remote_copy) if local_wins else (remote_copy, record)
                    self._conflict_log.record(
                        tx,
                        entity_type=spec.name,
                        entity_id=record_id,
                        discarded=loser,
                        kept=winner,
                        detected_at=detected_at,
                    )
                    conflicts += 1
                if local_wins:
                    merged[record_id] = record
                    to_upload.append(record_id)
                else:
                    # Queued snapshots older than the kept remote copy would overwrite it on the next pass.
                    stale_dropped += self._queue.drop_superseded(tx, upsert_types, record_id, remote_copy)

            duplicates_removed = 0
            if spec.name == PRODUCT_SALE_LOGS:
                survivors = {str(row["id"]) for row in collapse_duplicates(merged.values())}
                removed = [record_id for record_id in merged if record_id not in survivors]
                for record_id in removed:
                    del merged[record_id]
                duplicates_removed = len(removed)
                if removed:
                    logger.info("Collapsed %s duplicate sale logs", duplicates_removed)

            pending = self._queue.pending_ids(upsert_types, tx=tx)
            reenqueued = 0
            for record_id in to_upload:
                if record_id not in merged or record_id in pending:
                    continue
                self._queue.enqueue(tx, spec.upsert_action, merged[record_id])
                pending.add(record_id)
                reenqueued += 1

            tx.clear(spec.name)
            for record in merged.values():
                tx.put(spec.name, record)

        metrics_registry.increment(MERGE_REENQUEUED, reenqueued)
        metrics_registry.increment(MERGE_CONFLICTS, conflicts)
        metrics_registry.increment(MERGE_DUPLICATES_REMOVED, duplicates_removed)
        metrics_registry.increment(MERGE_STALE_DROPPED, stale_dropped)
        report = CollectionMergeReport(
            collection=spec.name,
            remote_count=len(remote),
            local_count=len(local),
            merged_count=len(merged),
            reenqueued=reenqueued,
            conflicts=conflicts,
            duplicates_removed=duplicates_removed,
            stale_dropped=stale_dropped,
        )
        logger.debug("Merged %s", spec.name, extra={"extra": asdict(report)})
        return report, list(merged.values())

    def _fetch_remote(self, spec: CollectionSpec) -> list[Record] | None:
        if self._gateway.simulation:
            logger.info("No remote store configured; loading %s from the local store only", spec.name)
            return None
        rows: list[Record] = []
        offset = 0
        try:
            while True:
                page = self._gateway.fetch_page(spec.remote_table, offset, self._page_size)
                rows.extend(page.rows)
                if page.scanned < self._page_size:
                    return rows
                offset += page.scanned
        except Exception as exc:  # noqa: BLE001
            log_operational_error(
                "Remote fetch failed; using the local copy",
                exc=exc,
                extra={"collection": spec.name, "rows_fetched": len(rows)},
            )
            return None
