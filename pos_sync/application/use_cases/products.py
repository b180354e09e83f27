from __future__ import annotations

import logging
from typing import Any

from pos_sync.application.use_cases.mutations import (
    MutationExecutor,
    MutationScope,
    editable_changes,
    ensure_version,
)
from pos_sync.application.use_cases.session import require_permission
from pos_sync.core.errors import InsufficientStockError, ValidationError
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import PRODUCTS
from pos_sync.domain.models import Permission, Product, StockChangeType, User

logger = logging.getLogger(__name__)


def validate_product(product: Product) -> None:
    if not product.name.strip():
        raise ValidationError("Product name is required")
    if product.cost_price < 0 or product.selling_price < 0:
        raise ValidationError("Prices cannot be negative")
    if product.stock < 0:
        raise ValidationError("Stock cannot be negative")
    if product.low_stock_threshold < 0:
        raise ValidationError("Low stock threshold cannot be negative")


def apply_stock_change(
    scope: MutationScope,
    product: Product,
    change_type: StockChangeType | str,
    quantity: int,
    user: User,
    *,
    new_cost_price: float | None = None,
) -> Product:
    """Writes an adjustment or a delivery to ``product``; stock never drops below zero."""
    kind = StockChangeType(change_type)
    if kind is StockChangeType.RECEIVE and quantity <= 0:
        raise ValidationError("Received quantity must be positive")
    if kind is StockChangeType.ADJUST and quantity == 0:
        raise ValidationError("Adjustment must change the stock")
    new_stock = product.stock + quantity
    if new_stock < 0:
        raise InsufficientStockError(product.id, -quantity, product.stock)
    changes: dict[str, Any] = {
        "stock": new_stock,
        "last_modified_by": user.id,
        "last_modified_by_name": user.name,
    }
    if kind is StockChangeType.RECEIVE and new_cost_price is not None:
        if new_cost_price <= 0:
            raise ValidationError("Cost price must be positive")
        changes["cost_price"] = new_cost_price
    action = ActionType.RECEIVE_STOCK if kind is StockChangeType.RECEIVE else ActionType.ADJUST_STOCK
    return scope.save(PRODUCTS, scope.stamp(product, **changes), action)


class ProductUseCases:
    def __init__(self, executor: MutationExecutor) -> None:
        self._executor = executor

    def list_products(self) -> list[Product]:
        return self._executor.state.all(PRODUCTS)

    def low_stock(self) -> list[Product]:
        return [product for product in self.list_products() if product.is_low_stock]

    def add_product(self, **fields: Any) -> Product:
        user = require_permission(self._executor.state, Permission.INVENTORY)
        fields.pop("id", None)
        with self._executor.mutate("add_product", PRODUCTS) as scope:
            try:
                draft = Product(id=scope.new_id(), **fields)
            except TypeError as exc:
                raise ValidationError(f"Invalid product fields: {exc}") from exc
            product = scope.stamp(draft, last_modified_by=user.id, last_modified_by_name=user.name)
            validate_product(product)
            scope.save(PRODUCTS, product, ActionType.ADD_PRODUCT)
            scope.audit("PRODUCT_ADD", f"Added product: {product.name} ({product.size})")
        return product

    def update_product(self, product_id: str, *, expected_version: int | None = None, **changes: Any) -> Product:
        user = require_permission(self._executor.state, Permission.INVENTORY)
        with self._executor.mutate("update_product", PRODUCTS) as scope:
            current = scope.require(PRODUCTS, product_id)
            ensure_version(current, expected_version)
            changes = editable_changes(current, changes)
            changes.update(last_modified_by=user.id, last_modified_by_name=user.name)
            product = scope.stamp(current, **changes)
            validate_product(product)
            scope.save(PRODUCTS, product, ActionType.UPDATE_PRODUCT)
            scope.audit("PRODUCT_EDIT", f"Updated product: {product.name} ({product.size})")
        return product

    def delete_product(self, product_id: str) -> None:
        require_permission(self._executor.state, Permission.INVENTORY)
        with self._executor.mutate("delete_product", PRODUCTS) as scope:
            product = scope.require(PRODUCTS, product_id)
            scope.remove(PRODUCTS, product_id, ActionType.DELETE_PRODUCT)
            scope.audit("PRODUCT_DELETE", f"Deleted product: {product.name} ({product.size})")

    def adjust_stock(self, product_id: str, change: int, reason: str) -> Product:
        user = require_permission(self._executor.state, Permission.INVENTORY)
        if not (reason or "").strip():
            raise ValidationError("A reason is required for stock adjustments")
        with self._executor.mutate("adjust_stock", PRODUCTS) as scope:
            product = scope.require(PRODUCTS, product_id)
            updated = apply_stock_change(scope, product, StockChangeType.ADJUST, change, user)
            scope.audit("INVENTORY_ADJ", f"Adjusted {product.name} by {change}. Reason: {reason}")
        return updated

    def receive_stock(self, product_id: str, quantity: int, new_cost_price: float | None = None) -> Product:
        user = require_permission(self._executor.state, Permission.INVENTORY)
        with self._executor.mutate("receive_stock", PRODUCTS) as scope:
            product = scope.require(PRODUCTS, product_id)
            updated = apply_stock_change(
                scope, product, StockChangeType.RECEIVE, quantity, user, new_cost_price=new_cost_price
            )
            scope.audit("STOCK_RECEIVE", f"Received {quantity} of {product.name}.")
        return updated
