from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SyncQueueItem:
    key: int
    type: str
    payload: dict[str, Any]
    timestamp: int
    retry_count: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
        }


@dataclass(frozen=True)
class FailedSyncQueueItem:
    key: int
    type: str
    payload: dict[str, Any]
    timestamp: int
    retry_count: int
    failed_at: int
    total_retries: int
    can_retry: bool
    last_error: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
            "failedAt": self.failed_at,
            "totalRetries": self.total_retries,
            "canRetry": self.can_retry,
            "lastError": self.last_error,
        }


@dataclass(frozen=True)
class RemotePage:
    """One window of a remote table. ``scanned`` counts every row read, blank ones included."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    scanned: int = 0


@dataclass(frozen=True)
class PushOutcome:
    key: int
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class SyncPassReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    dead_lettered: int = 0
    skipped: bool = False
    reason: str | None = None

    @classmethod
    def skipped_pass(cls, reason: str) -> "SyncPassReport":
        return cls(skipped=True, reason=reason)


@dataclass(frozen=True)
class RetryAllResult:
    succeeded: int
    failed: int


@dataclass(frozen=True)
class CollectionMergeReport:
    collection: str
    remote_count: int
    local_count: int
    merged_count: int
    reenqueued: int = 0
    conflicts: int = 0
    duplicates_removed: int = 0
    stale_dropped: int = 0
    used_remote: bool = True


@dataclass(frozen=True)
class MergeReport:
    collections: tuple[CollectionMergeReport, ...] = field(default_factory=tuple)

    @property
    def offline_collections(self) -> list[str]:
        return [report.collection for report in self.collections if not report.used_remote]

    @property
    def offline(self) -> bool:
        return bool(self.offline_collections)

    @property
    def total_reenqueued(self) -> int:
        return sum(report.reenqueued for report in self.collections)

    def for_collection(self, name: str) -> CollectionMergeReport | None:
        for report in self.collections:
            if report.collection == name:
                return report
        return None


@dataclass(frozen=True)
class MergeConflict:
    id: int
    entity_type: str
    entity_id: str
    discarded: dict[str, Any]
    kept: dict[str, Any]
    detected_at: str


@dataclass(frozen=True)
class QueueStats:
    sync_queue_size: int
    failed_queue_size: int
    total_size: int
    oldest_item_age_ms: int | None


@dataclass(frozen=True)
class IntegrityIssue:
    kind: str
    sale_id: str
    product_id: str
    log_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class IntegrityReport:
    checked_sales: int
    issues: tuple[IntegrityIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.issues

    def of_kind(self, kind: str) -> list[IntegrityIssue]:
        return [issue for issue in self.issues if issue.kind == kind]
