from __future__ import annotations

from typing import Any, Protocol

from pos_sync.domain.sync_models import RemotePage


class RemoteStore(Protocol):
    """Opaque remote tables addressed by name, rows keyed by ``id``."""

    def upsert(self, table: str, row: dict[str, Any]) -> None:
        ...

    def delete(self, table: str, row_id: str) -> None:
        ...

    def fetch_page(self, table: str, offset: int, limit: int) -> RemotePage:
        ...


class ConnectivityProbe(Protocol):
    def is_online(self) -> bool:
        ...
