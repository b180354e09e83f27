from __future__ import annotations

from dataclasses import dataclass

from pos_sync.domain.action_types import ActionType
from pos_sync.domain.models import (
    AuditLog,
    BusinessSettings,
    PayloadModel,
    Product,
    ProductSaleLog,
    Sale,
    Shift,
    StockChangeRequest,
    User,
    VoidRequest,
)

PRODUCTS = "products"
USERS = "users"
SALES = "sales"
SHIFTS = "shifts"
AUDIT_LOGS = "audit_logs"
VOID_REQUESTS = "void_requests"
STOCK_CHANGE_REQUESTS = "stock_change_requests"
PRODUCT_SALE_LOGS = "product_sale_logs"
BUSINESS_SETTINGS = "business_settings"

SYNC_QUEUE = "sync_queue"
FAILED_SYNC_QUEUE = "failed_sync_queue"
MERGE_CONFLICTS = "merge_conflicts"


@dataclass(frozen=True)
class CollectionSpec:
    """A syncable collection: local table, remote table and the action used to re-upload it."""

    name: str
    remote_table: str
    upsert_action: ActionType
    model: type[PayloadModel]


SYNCABLE_COLLECTIONS: tuple[CollectionSpec, ...] = (
    CollectionSpec(PRODUCTS, "products", ActionType.UPDATE_PRODUCT, Product),
    CollectionSpec(USERS, "users", ActionType.UPDATE_USER, User),
    CollectionSpec(SALES, "sales", ActionType.UPDATE_SALE, Sale),
    CollectionSpec(SHIFTS, "shifts", ActionType.OPEN_SHIFT, Shift),
    CollectionSpec(AUDIT_LOGS, "audit_logs", ActionType.LOG, AuditLog),
    CollectionSpec(VOID_REQUESTS, "void_requests", ActionType.VOID_REQUEST, VoidRequest),
    CollectionSpec(STOCK_CHANGE_REQUESTS, "stock_change_requests", ActionType.STOCK_CHANGE_REQUEST, StockChangeRequest),
    CollectionSpec(PRODUCT_SALE_LOGS, "product_sale_logs", ActionType.UPDATE_PRODUCT_SALE_LOG, ProductSaleLog),
    CollectionSpec(BUSINESS_SETTINGS, "business_settings", ActionType.UPDATE_SETTINGS, BusinessSettings),
)

ENTITY_COLLECTIONS: frozenset[str] = frozenset(spec.name for spec in SYNCABLE_COLLECTIONS)
ALL_COLLECTIONS: frozenset[str] = ENTITY_COLLECTIONS | {SYNC_QUEUE, FAILED_SYNC_QUEUE, MERGE_CONFLICTS}


def collection_spec(name: str) -> CollectionSpec:
    for spec in SYNCABLE_COLLECTIONS:
        if spec.name == name:
            return spec
    raise KeyError(name)
