from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from pos_sync.core.errors import NotAuthenticatedError
from pos_sync.domain.collections import SHIFTS, USERS, collection_spec
from pos_sync.domain.models import PayloadModel, Shift, ShiftStatus, User
from pos_sync.domain.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT_SECONDS = 300.0


class AppState:
    """In-memory view of the committed local data plus the signed-in session.

    Built from the merge result by ``init`` and emptied by ``teardown``. It is
    only updated after a local transaction commits, so it never shows an
    uncommitted write. The sale lock lives here because it guards the process,
    not a single use case instance.
    """

    def __init__(self, *, clock: Clock = utc_now, session_timeout_seconds: float = DEFAULT_SESSION_TIMEOUT_SECONDS) -> None:
        self._clock = clock
        self._session_timeout = timedelta(seconds=session_timeout_seconds)
        self._lock = threading.RLock()
        self._collections: dict[str, dict[str, PayloadModel]] = {}
        self._current_user_id: str | None = None
        self._last_activity: datetime | None = None
        self._initialized = False
        self.sale_lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self, records: Mapping[str, Iterable[Mapping[str, Any]]]) -> None:
        loaded: dict[str, dict[str, PayloadModel]] = {}
        for name, rows in records.items():
            model = collection_spec(name).model
            entities: dict[str, PayloadModel] = {}
            for row in rows:
                try:
                    entity = model.from_payload(row)
                except (TypeError, ValueError) as exc:
                    logger.warning("Skipping malformed %s record %s: %s", name, row.get("id"), exc)
                    continue
                entities[entity.id] = entity  # type: ignore[attr-defined]
            loaded[name] = entities
        with self._lock:
            self._collections = loaded
            self._initialized = True
        logger.info("Application state loaded: %s", {name: len(items) for name, items in loaded.items()})

    def teardown(self) -> None:
        with self._lock:
            self._collections = {}
            self._current_user_id = None
            self._last_activity = None
            self._initialized = False

    def get(self, collection: str, entity_id: str) -> Any:
        with self._lock:
            return self._collections.get(collection, {}).get(entity_id)

    def all(self, collection: str) -> list[Any]:
        with self._lock:
            return list(self._collections.get(collection, {}).values())

    def apply_changes(
        self,
        saved: Iterable[tuple[str, PayloadModel]] = (),
        removed: Iterable[tuple[str, str]] = (),
    ) -> None:
        with self._lock:
            for collection, entity in saved:
                self._collections.setdefault(collection, {})[entity.id] = entity  # type: ignore[attr-defined]
            for collection, entity_id in removed:
                self._collections.get(collection, {}).pop(entity_id, None)

    # Session

    def start_session(self, user: User) -> None:
        with self._lock:
            self._current_user_id = user.id
            self._last_activity = self._clock()

    def end_session(self) -> None:
        with self._lock:
            self._current_user_id = None
            self._last_activity = None

    def touch(self) -> None:
        with self._lock:
            if self._current_user_id is not None:
                self._last_activity = self._clock()

    def session_expired(self) -> bool:
        with self._lock:
            if self._current_user_id is None or self._last_activity is None:
                return False
            return self._clock() - self._last_activity >= self._session_timeout

    @property
    def current_user(self) -> User | None:
        with self._lock:
            if self._current_user_id is None:
                return None
            if self.session_expired():
                logger.info("Session of user %s expired after inactivity", self._current_user_id)
                self.end_session()
                return None
            return self._collections.get(USERS, {}).get(self._current_user_id)  # type: ignore[return-value]

    def require_user(self) -> User:
        user = self.current_user
        if user is None:
            raise NotAuthenticatedError("No user is signed in")
        self.touch()
        return user

    def open_shift_for(self, user_id: str) -> Shift | None:
        for shift in self.all(SHIFTS):
            if shift.status == ShiftStatus.OPEN.value and shift.cashier_id == user_id:
                return shift
        return None
