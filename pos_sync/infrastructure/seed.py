from __future__ import annotations

import logging
from dataclasses import replace

from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import BUSINESS_SETTINGS, PRODUCTS, SYNC_QUEUE, USERS
from pos_sync.domain.models import BusinessSettings, Permission, Product, Role, User
from pos_sync.domain.time_utils import Clock, to_iso, utc_now
from pos_sync.infrastructure.local_store import LocalStore
from pos_sync.infrastructure.sync_queue_sqlite import SQLiteSyncQueue

logger = logging.getLogger(__name__)

_ALL_PERMISSIONS = tuple(permission.value for permission in Permission)

INITIAL_USERS: tuple[User, ...] = (
    User(id="u1", name="Owner Admin", role=Role.ADMIN.value, pin="1111", permissions=_ALL_PERMISSIONS),
    User(
        id="u2",
        name="Store Manager",
        role=Role.MANAGER.value,
        pin="2222",
        permissions=(Permission.POS.value, Permission.INVENTORY.value, Permission.REPORTS.value),
    ),
    User(id="u3", name="Joe Cashier", role=Role.CASHIER.value, pin="3333", permissions=(Permission.POS.value,)),
)

INITIAL_PRODUCTS: tuple[Product, ...] = (
    Product(id="p1", name="Jameson Irish Whiskey", type="Whiskey", size="750ml", brand="Jameson", sku="1001",
            cost_price=2000, selling_price=3299, stock=24, low_stock_threshold=5),
    Product(id="p2", name="Jameson Irish Whiskey", type="Whiskey", size="1L", brand="Jameson", sku="1002",
            cost_price=2800, selling_price=4599, stock=12, low_stock_threshold=5),
    Product(id="p3", name="Smirnoff Red", type="Vodka", size="750ml", brand="Smirnoff", sku="2001",
            cost_price=1200, selling_price=1999, stock=36, low_stock_threshold=10),
    Product(id="p4", name="Tanqueray London Dry", type="Gin", size="750ml", brand="Tanqueray", sku="3001",
            cost_price=1850, selling_price=2999, stock=15, low_stock_threshold=5),
    Product(id="p5", name="Corona Extra 6pk", type="Beer", size="330ml x6", brand="Corona", sku="4001",
            cost_price=800, selling_price=1399, stock=50, low_stock_threshold=12),
)

DEFAULT_BUSINESS_SETTINGS = BusinessSettings(
    business_name="Grab Bottle",
    phone="+254 700 000000",
    location="Nairobi, Kenya",
    receipt_footer="Thank you for your business!",
)


def seed_if_empty(store: LocalStore, queue: SQLiteSyncQueue, clock: Clock = utc_now) -> bool:
    """Writes the starter users, products and settings when no user exists yet.

    Seed records are queued for upload like any other local write, so a fresh
    remote spreadsheet receives them on the first sync pass.
    """
    updated_at = to_iso(clock())
    with store.transaction(USERS, PRODUCTS, BUSINESS_SETTINGS, SYNC_QUEUE) as tx:
        if tx.get_all_keys(USERS):
            return False
        logger.info("Seeding starter users and products")
        for user in INITIAL_USERS:
            payload = replace(user, version=1, updated_at=updated_at).to_payload()
            tx.put(USERS, payload)
            queue.enqueue(tx, ActionType.ADD_USER, payload)
        for product in INITIAL_PRODUCTS:
            if tx.exists(PRODUCTS, product.id):
                continue
            payload = replace(product, version=1, updated_at=updated_at).to_payload()
            tx.put(PRODUCTS, payload)
            queue.enqueue(tx, ActionType.ADD_PRODUCT, payload)
        if not tx.exists(BUSINESS_SETTINGS, DEFAULT_BUSINESS_SETTINGS.id):
            payload = replace(DEFAULT_BUSINESS_SETTINGS, version=1, updated_at=updated_at).to_payload()
            tx.put(BUSINESS_SETTINGS, payload)
            queue.enqueue(tx, ActionType.UPDATE_SETTINGS, payload)
    return True
