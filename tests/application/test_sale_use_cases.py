from __future__ import annotations

import pytest

from pos_sync.application.use_cases.sales import merge_cart_lines
from pos_sync.bootstrap.container import AppContainer
from pos_sync.core.errors import (
    BusyError,
    InsufficientStockError,
    MissingCostPriceError,
    NotAuthenticatedError,
    PermissionDeniedError,
    ValidationError,
)
from pos_sync.domain.models import CartLine
from tests.e2e_sync.fakes import InMemoryRemoteStore, pending_types, sign_in


def test_sale_updates_stock_and_queues_every_record(pos: AppContainer) -> None:
    sign_in(pos, "3333")

    sale = pos.sales.process_sale([CartLine("p1", 2), CartLine("p3", 1)], "CASH")

    assert sale.total_amount == 2 * 3299 + 1999
    assert sale.total_cost == 2 * 2000 + 1200
    assert sale.cashier_id == "u3"
    assert sale.version == 1
    product = pos.state.get("products", "p1")
    assert (product.stock, product.units_sold, product.version) == (22, 2, 2)
    assert pos.store.get("products", "p1")["stock"] == 22
    assert sorted(pos.store.get_all_keys("product_sale_logs")) == [f"{sale.id}-p1", f"{sale.id}-p3"]
    assert pending_types(pos.queue) == [
        "UPDATE_PRODUCT",
        "UPDATE_PRODUCT",
        "SALE",
        "PRODUCT_SALE_LOG",
        "PRODUCT_SALE_LOG",
        "LOG",
    ]


def test_sale_reaches_the_remote_after_a_pass(pos: AppContainer, remote: InMemoryRemoteStore) -> None:
    sign_in(pos, "3333")
    sale = pos.sales.process_sale([CartLine("p5", 3)], "MOBILE")

    pos.processor.run_once()

    assert remote.row("sales", sale.id)["paymentMethod"] == "MOBILE"
    assert remote.row("products", "p5")["stock"] == 47
    assert remote.row("product_sale_logs", f"{sale.id}-p5")["profit"] == 3 * (1399 - 800)
    assert [row["action"] for row in remote.rows("audit_logs")] == ["SALE"]


def test_repeated_cart_lines_are_folded(pos: AppContainer) -> None:
    sign_in(pos, "3333")

    sale = pos.sales.process_sale([CartLine("p1", 1), CartLine("p1", 2)], "CARD")

    assert [(item.product_id, item.quantity) for item in sale.items] == [("p1", 3)]
    assert pos.store.get_all_keys("product_sale_logs") == [f"{sale.id}-p1"]


def test_shift_is_attached_to_the_sale(pos: AppContainer) -> None:
    sign_in(pos, "3333")
    shift = pos.shifts.open_shift(100)

    sale = pos.sales.process_sale([CartLine("p4", 1)], "CASH")

    assert sale.shift_id == shift.id


def test_known_sale_id_returns_the_stored_sale(pos: AppContainer) -> None:
    sign_in(pos, "3333")
    first = pos.sales.process_sale([CartLine("p1", 1)], "CASH", sale_id="sale-1")
    queued = pos.queue.count()

    again = pos.sales.process_sale([CartLine("p1", 1)], "CASH", sale_id="sale-1")

    assert again == first
    assert pos.queue.count() == queued
    assert pos.state.get("products", "p1").stock == 23


def test_failed_sale_leaves_nothing_behind(pos: AppContainer) -> None:
    sign_in(pos, "3333")

    with pytest.raises(InsufficientStockError):
        pos.sales.process_sale([CartLine("p1", 1), CartLine("p2", 13)], "CASH")

    assert pos.store.get("products", "p1")["stock"] == 24
    assert pos.store.get_all("sales") == []
    assert pos.queue.count() == 0


def test_missing_cost_price_blocks_the_sale(pos: AppContainer) -> None:
    sign_in(pos, "1111")
    pos.products.update_product("p2", cost_price=0)
    pos.processor.run_once()

    with pytest.raises(MissingCostPriceError):
        pos.sales.process_sale([CartLine("p2", 1)], "CASH")

    sale = pos.sales.process_sale([CartLine("p2", 1, cost_at_sale=2500)], "CASH")
    assert sale.total_cost == 2500


@pytest.mark.parametrize(
    "items, method",
    [
        ([CartLine("p1", 1)], "CHEQUE"),
        ([], "CASH"),
        ([CartLine("p1", 0)], "CASH"),
        ([CartLine("p1", 1, price_at_sale=10), CartLine("p1", 1, price_at_sale=12)], "CASH"),
    ],
)
def test_invalid_sales_are_rejected(pos: AppContainer, items, method) -> None:
    sign_in(pos, "3333")

    with pytest.raises(ValidationError):
        pos.sales.process_sale(items, method)


def test_concurrent_sale_fails_fast(pos: AppContainer) -> None:
    sign_in(pos, "3333")
    pos.state.sale_lock.acquire()
    try:
        with pytest.raises(BusyError):
            pos.sales.process_sale([CartLine("p1", 1)], "CASH")
    finally:
        pos.state.sale_lock.release()


def test_sales_need_a_signed_in_user_with_pos(pos: AppContainer) -> None:
    with pytest.raises(NotAuthenticatedError):
        pos.sales.process_sale([CartLine("p1", 1)], "CASH")

    sign_in(pos, "1111")
    pos.users.update_user("u2", permissions=["INVENTORY"])
    sign_in(pos, "2222")
    with pytest.raises(PermissionDeniedError):
        pos.sales.process_sale([CartLine("p1", 1)], "CASH")


def test_merge_cart_lines_keeps_first_seen_order() -> None:
    lines = merge_cart_lines([CartLine("b", 1), CartLine("a", 2), CartLine("b", 4, cost_at_sale=3)])

    assert lines == [CartLine("b", 5, None, 3), CartLine("a", 2)]
