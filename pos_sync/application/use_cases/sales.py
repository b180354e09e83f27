from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from pos_sync.application.use_cases.mutations import MutationExecutor, MutationScope
from pos_sync.application.use_cases.session import require_permission
from pos_sync.core.errors import (
    BusyError,
    InsufficientStockError,
    MissingCostPriceError,
    ValidationError,
)
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import PRODUCT_SALE_LOGS, PRODUCTS, SALES, SHIFTS
from pos_sync.domain.ids import product_sale_log_id
from pos_sync.domain.models import (
    CartLine,
    PaymentMethod,
    Permission,
    Product,
    ProductSaleLog,
    Sale,
    SaleItem,
    ShiftStatus,
    User,
)

logger = logging.getLogger(__name__)

_PAYMENT_METHODS = frozenset(method.value for method in PaymentMethod)


@dataclass(frozen=True)
class _PricedLine:
    product: Product
    quantity: int
    price: float
    cost: float


def merge_cart_lines(lines: Sequence[CartLine]) -> list[CartLine]:
    """Folds repeated products into one line; explicit prices must agree."""
    merged: dict[str, CartLine] = {}
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError(f"Quantity for product {line.product_id} must be positive")
        previous = merged.get(line.product_id)
        if previous is None:
            merged[line.product_id] = line
            continue
        price = _agree(previous.price_at_sale, line.price_at_sale, line.product_id, "price")
        cost = _agree(previous.cost_at_sale, line.cost_at_sale, line.product_id, "cost")
        merged[line.product_id] = CartLine(line.product_id, previous.quantity + line.quantity, price, cost)
    return list(merged.values())


def sale_log_for(sale: Sale, item: SaleItem) -> ProductSaleLog:
    return ProductSaleLog(
        id=product_sale_log_id(sale.id, item.product_id),
        sale_id=sale.id,
        product_id=item.product_id,
        product_name=item.product_name,
        size=item.size,
        quantity=item.quantity,
        price_at_sale=item.price_at_sale,
        cost_at_sale=item.cost_at_sale,
        total_amount=item.line_total,
        total_cost=item.line_cost,
        profit=item.line_total - item.line_cost,
        cashier_id=sale.cashier_id,
        cashier_name=sale.cashier_name,
        payment_method=sale.payment_method,
        timestamp=sale.timestamp,
    )


def _agree(first: float | None, second: float | None, product_id: str, label: str) -> float | None:
    if first is not None and second is not None and first != second:
        raise ValidationError(f"Cart has conflicting {label}s for product {product_id}")
    return first if first is not None else second


class SaleUseCases:
    """Sale processing: the main producer of queue entries.

    One sale at a time per process: a second call while a sale is being
    written fails fast with ``BusyError`` instead of waiting.
    """

    def __init__(self, executor: MutationExecutor) -> None:
        self._executor = executor

    def process_sale(
        self,
        items: Sequence[CartLine],
        payment_method: PaymentMethod | str,
        *,
        sale_id: str | None = None,
    ) -> Sale:
        state = self._executor.state
        user = require_permission(state, Permission.POS)
        method = payment_method.value if isinstance(payment_method, PaymentMethod) else payment_method
        if method not in _PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method {payment_method!r}")
        if not items:
            raise ValidationError("A sale needs at least one item")
        lines = merge_cart_lines(items)

        if not state.sale_lock.acquire(blocking=False):
            raise BusyError("Another sale is being processed")
        try:
            with self._executor.mutate("process_sale", PRODUCTS, SALES, PRODUCT_SALE_LOGS, SHIFTS) as scope:
                if sale_id and scope.exists(SALES, sale_id):
                    logger.info("Sale %s already recorded; returning the stored copy", sale_id)
                    return scope.get(SALES, sale_id)
                priced = [self._price_line(scope, line) for line in lines]
                sale = self._write_sale(scope, user, priced, method, sale_id or scope.new_id())
                scope.audit(
                    "SALE",
                    f"Sale #{sale.id} processed for {sale.total_amount:.2f} via {method}",
                )
            return sale
        finally:
            state.sale_lock.release()

    @staticmethod
    def _price_line(scope: MutationScope, line: CartLine) -> _PricedLine:
        product: Product = scope.require(PRODUCTS, line.product_id)
        cost = line.cost_at_sale if line.cost_at_sale is not None else product.cost_price
        if not cost or cost <= 0:
            raise MissingCostPriceError(product.id, product.name)
        if product.stock < line.quantity:
            raise InsufficientStockError(product.id, line.quantity, product.stock)
        price = line.price_at_sale if line.price_at_sale is not None else product.selling_price
        if price < 0:
            raise ValidationError(f"Price for product {product.id} cannot be negative")
        return _PricedLine(product, line.quantity, price, cost)

    def _write_sale(
        self,
        scope: MutationScope,
        user: User,
        priced: list[_PricedLine],
        method: str,
        sale_id: str,
    ) -> Sale:
        sale_items = tuple(
            SaleItem(
                product_id=line.product.id,
                product_name=line.product.name,
                size=line.product.size,
                quantity=line.quantity,
                price_at_sale=line.price,
                cost_at_sale=line.cost,
            )
            for line in priced
        )
        for line in priced:
            scope.save(
                PRODUCTS,
                scope.stamp(
                    line.product,
                    stock=line.product.stock - line.quantity,
                    units_sold=line.product.units_sold + line.quantity,
                ),
                ActionType.UPDATE_PRODUCT,
            )

        shift_id = next(
            (
                shift.id
                for shift in scope.all(SHIFTS)
                if shift.status == ShiftStatus.OPEN.value and shift.cashier_id == user.id
            ),
            None,
        )
        sale = scope.stamp(
            Sale(
                id=sale_id,
                timestamp=scope.now_ms,
                cashier_id=user.id,
                cashier_name=user.name,
                total_amount=sum(item.line_total for item in sale_items),
                total_cost=sum(item.line_cost for item in sale_items),
                payment_method=method,
                items=sale_items,
                shift_id=shift_id,
            )
        )
        scope.save(SALES, sale, ActionType.SALE)

        for item in sale_items:
            log_id = product_sale_log_id(sale.id, item.product_id)
            if scope.exists(PRODUCT_SALE_LOGS, log_id):
                logger.warning("Sale log %s already exists; not writing it again", log_id)
                continue
            log = scope.stamp(sale_log_for(sale, item))
            scope.save(PRODUCT_SALE_LOGS, log, ActionType.PRODUCT_SALE_LOG)
        return sale
