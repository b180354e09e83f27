from __future__ import annotations

import contextlib
import logging
from dataclasses import fields
from typing import Any, Callable, Iterator, Mapping, TypeVar

from pos_sync.application.app_state import AppState
from pos_sync.core.errors import NotFoundError, StaleVersionError, ValidationError
from pos_sync.core.observability import OperationContext
from pos_sync.core.operational_logging import log_operational_error
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import AUDIT_LOGS, SYNC_QUEUE, collection_spec
from pos_sync.domain.ids import generate_id
from pos_sync.domain.models import AuditLog, PayloadModel, User
from pos_sync.domain.time_utils import Clock, to_epoch_ms, to_iso, utc_now
from pos_sync.domain.versioning import bump
from pos_sync.infrastructure.local_store import LocalStore, StoreTransaction
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteSyncQueue

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=PayloadModel)
IdFactory = Callable[[int], str]


_PROTECTED_FIELDS = frozenset({"id", "version", "updated_at"})


def ensure_version(entity: Any, expected_version: int | None) -> None:
    """Optimistic check; ``None`` skips it."""
    if expected_version is None:
        return
    if entity.version != expected_version:
        raise StaleVersionError(entity.id, expected_version, entity.version)


def editable_changes(entity: Any, changes: Mapping[str, Any]) -> dict[str, Any]:
    allowed = {field.name for field in fields(entity)} - _PROTECTED_FIELDS
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValidationError(f"Cannot change {', '.join(unknown)} on {type(entity).__name__}")
    return dict(changes)


class MutationScope:
    """Write handle for one domain mutation.

    Every ``save``/``remove`` writes the entity and its queue entry in the
    same transaction. Changes reach ``AppState`` and the audit log only after
    the executor commits.
    """

    def __init__(
        self,
        tx: StoreTransaction,
        queue: SQLiteSyncQueue,
        *,
        now_ms: int,
        now_iso: str,
        id_factory: IdFactory,
    ) -> None:
        self._tx = tx
        self._queue = queue
        self.now_ms = now_ms
        self.now_iso = now_iso
        self._id_factory = id_factory
        self.saved: list[tuple[str, PayloadModel]] = []
        self.removed: list[tuple[str, str]] = []
        self.audit_entries: list[tuple[str, str]] = []

    def new_id(self) -> str:
        return self._id_factory(self.now_ms)

    def get(self, collection: str, entity_id: str) -> Any:
        payload = self._tx.get(collection, entity_id)
        if payload is None:
            return None
        return collection_spec(collection).model.from_payload(payload)

    def require(self, collection: str, entity_id: str) -> Any:
        entity = self.get(collection, entity_id)
        if entity is None:
            raise NotFoundError(f"{collection} record {entity_id} does not exist")
        return entity

    def exists(self, collection: str, entity_id: str) -> bool:
        return self._tx.exists(collection, entity_id)

    def all(self, collection: str) -> list[Any]:
        model = collection_spec(collection).model
        return [model.from_payload(payload) for payload in self._tx.get_all(collection)]

    def stamp(self, entity: E, **changes: Any) -> E:
        return bump(entity, self.now_iso, **changes)

    def save(self, collection: str, entity: E, action: ActionType | str) -> E:
        payload = entity.to_payload()
        self._tx.put(collection, payload)
        self._queue.enqueue(self._tx, action, payload, timestamp_ms=self.now_ms)
        self.saved.append((collection, entity))
        return entity

    def remove(self, collection: str, entity_id: str, action: ActionType | str) -> bool:
        deleted = self._tx.delete(collection, entity_id)
        self._queue.enqueue(self._tx, action, {"id": entity_id}, timestamp_ms=self.now_ms)
        self.removed.append((collection, entity_id))
        return deleted

    def enqueue(self, action: ActionType | str, payload: Mapping[str, Any]) -> int:
        return self._queue.enqueue(self._tx, action, payload, timestamp_ms=self.now_ms)

    def audit(self, action: str, details: str) -> None:
        self.audit_entries.append((action, details))


class MutationExecutor:
    """Runs domain mutations as validate, write and enqueue, commit, publish.

    The audit entries a mutation asks for are written afterwards in their own
    transaction and go through the queue like any other record. A failing
    audit write is logged and never undoes the committed mutation.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: SQLiteSyncQueue,
        state: AppState,
        *,
        clock: Clock = utc_now,
        id_factory: IdFactory = generate_id,
    ) -> None:
        self._store = store
        self._queue = queue
        self._state = state
        self._clock = clock
        self._id_factory = id_factory

    @property
    def state(self) -> AppState:
        return self._state

    @contextlib.contextmanager
    def mutate(self, operation_name: str, *collections: str) -> Iterator[MutationScope]:
        with OperationContext(operation_name, logger):
            now = self._clock()
            with self._store.transaction(*collections, SYNC_QUEUE) as tx:
                scope = MutationScope(
                    tx,
                    self._queue,
                    now_ms=to_epoch_ms(now),
                    now_iso=to_iso(now),
                    id_factory=self._id_factory,
                )
                yield scope
            self._state.apply_changes(scope.saved, scope.removed)
            if scope.audit_entries:
                self._write_audit(scope)
        logger.info("%s committed", operation_name, extra={"extra": {"saved": len(scope.saved), "removed": len(scope.removed)}})

    def _write_audit(self, scope: MutationScope) -> None:
        user = self._state.current_user
        if user is None:
            return
        try:
            with self._store.transaction(AUDIT_LOGS, SYNC_QUEUE) as tx:
                entries = []
                for action, details in scope.audit_entries:
                    entry = self._audit_entry(user, action, details, scope.now_ms, scope.now_iso)
                    payload = entry.to_payload()
                    tx.put(AUDIT_LOGS, payload)
                    self._queue.enqueue(tx, ActionType.LOG, payload, timestamp_ms=scope.now_ms)
                    entries.append((AUDIT_LOGS, entry))
        except Exception as exc:  # noqa: BLE001
            log_operational_error("Audit log write failed", exc=exc, extra={"actions": [a for a, _ in scope.audit_entries]})
            return
        self._state.apply_changes(entries)

    def _audit_entry(self, user: User, action: str, details: str, now_ms: int, now_iso: str) -> AuditLog:
        return AuditLog(
            id=self._id_factory(now_ms),
            timestamp=now_ms,
            user_id=user.id,
            user_name=user.name,
            action=action,
            details=details,
            version=1,
            updated_at=now_iso,
        )
