from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Mapping

from pos_sync.core.metrics import SYNC_DROPPED_UNKNOWN, metrics_registry
from pos_sync.core.operational_logging import log_operational_error
from pos_sync.domain.action_types import ActionType, action_value
from pos_sync.domain.ports import RemoteStore
from pos_sync.domain.remote_errors import RemoteConfigError
from pos_sync.domain.sync_models import RemotePage
from pos_sync.domain.time_utils import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)

RemoteOperation = Literal["upsert", "delete"]


@dataclass(frozen=True)
class RemoteAction:
    table: str
    operation: RemoteOperation


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: str | None = None


def _upsert(table: str) -> RemoteAction:
    return RemoteAction(table, "upsert")


def _delete(table: str) -> RemoteAction:
    return RemoteAction(table, "delete")


ACTION_MAP: dict[str, RemoteAction] = {
    ActionType.SALE.value: _upsert("sales"),
    ActionType.UPDATE_SALE.value: _upsert("sales"),
    ActionType.DELETE_SALE.value: _delete("sales"),
    ActionType.ADD_PRODUCT.value: _upsert("products"),
    ActionType.UPDATE_PRODUCT.value: _upsert("products"),
    ActionType.ADJUST_STOCK.value: _upsert("products"),
    ActionType.RECEIVE_STOCK.value: _upsert("products"),
    ActionType.DELETE_PRODUCT.value: _delete("products"),
    ActionType.ADD_USER.value: _upsert("users"),
    ActionType.UPDATE_USER.value: _upsert("users"),
    ActionType.DELETE_USER.value: _delete("users"),
    ActionType.OPEN_SHIFT.value: _upsert("shifts"),
    ActionType.CLOSE_SHIFT.value: _upsert("shifts"),
    ActionType.LOG.value: _upsert("audit_logs"),
    ActionType.UPDATE_SETTINGS.value: _upsert("business_settings"),
    ActionType.VOID_REQUEST.value: _upsert("void_requests"),
    ActionType.VOID_APPROVED.value: _upsert("void_requests"),
    ActionType.VOID_REJECTED.value: _upsert("void_requests"),
    ActionType.STOCK_CHANGE_REQUEST.value: _upsert("stock_change_requests"),
    ActionType.STOCK_CHANGE_APPROVED.value: _upsert("stock_change_requests"),
    ActionType.STOCK_CHANGE_REJECTED.value: _upsert("stock_change_requests"),
    ActionType.PRODUCT_SALE_LOG.value: _upsert("product_sale_logs"),
    ActionType.UPDATE_PRODUCT_SALE_LOG.value: _upsert("product_sale_logs"),
    ActionType.DELETE_PRODUCT_SALE_LOG.value: _delete("product_sale_logs"),
}


def resolve_action(action_type: ActionType | str) -> RemoteAction | None:
    return ACTION_MAP.get(action_value(action_type))


def upsert_actions_for(table: str) -> frozenset[str]:
    return frozenset(name for name, action in ACTION_MAP.items() if action.table == table and action.operation == "upsert")


def normalize_product_payload(payload: Mapping[str, Any], updated_at: str) -> dict[str, Any]:
    """Fills the product columns older clients may omit."""
    row = dict(payload)
    row["sku"] = row.get("sku") or ""
    row["barcode"] = row.get("barcode") or ""
    if row.get("lowStockThreshold") is None:
        row["lowStockThreshold"] = 5
    if row.get("unitsSold") is None:
        row["unitsSold"] = 0
    if row.get("version") is None:
        row["version"] = 1
    row["updatedAt"] = row.get("updatedAt") or updated_at
    return row


class RemoteGateway:
    """Maps queued ``(action_type, payload)`` pairs onto remote upserts and deletes.

    Without a remote store the gateway runs in simulation mode: every push is
    logged and reported as delivered, so a device that was never configured
    keeps an empty queue instead of dead-lettering its whole history.
    """

    def __init__(self, remote_store: RemoteStore | None, *, clock: Clock = utc_now) -> None:
        self._remote = remote_store
        self._clock = clock

    @property
    def simulation(self) -> bool:
        return self._remote is None

    def push(self, action_type: ActionType | str, payload: Mapping[str, Any]) -> bool:
        return self.deliver(action_type, payload).ok

    def deliver(self, action_type: ActionType | str, payload: Mapping[str, Any]) -> DeliveryResult:
        type_name = action_value(action_type)
        action = resolve_action(type_name)
        if action is None:
            logger.warning("Dropping queue entry with unknown action type %s", type_name)
            metrics_registry.increment(SYNC_DROPPED_UNKNOWN)
            return DeliveryResult(ok=True)
        if self._remote is None:
            logger.info("Simulation mode: %s on %s not sent", type_name, action.table)
            return DeliveryResult(ok=True)
        try:
            if action.operation == "delete":
                self._remote.delete(action.table, str(payload["id"]))
            else:
                self._remote.upsert(action.table, self._row_for(action.table, payload))
        except Exception as exc:  # noqa: BLE001
            log_operational_error(
                "Remote push failed",
                exc=exc,
                extra={
                    "action_type": type_name,
                    "table": action.table,
                    "entity_id": _safe_id(payload),
                    "operation": getattr(exc, "operation", None),
                },
            )
            return DeliveryResult(ok=False, error=f"{type(exc).__name__}: {exc}")
        logger.debug("Pushed %s %s to %s", type_name, _safe_id(payload), action.table)
        return DeliveryResult(ok=True)

    def fetch_page(self, table: str, offset: int, limit: int) -> RemotePage:
        if self._remote is None:
            raise RemoteConfigError("Remote store is not configured")
        return self._remote.fetch_page(table, offset, limit)

    def _row_for(self, table: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        if not payload.get("id"):
            raise ValueError(f"Payload for {table} has no id")
        if table == "products":
            return normalize_product_payload(payload, to_iso(self._clock()))
        return dict(payload)


def _safe_id(payload: Mapping[str, Any]) -> Any:
    return payload.get("id") if isinstance(payload, Mapping) else None
