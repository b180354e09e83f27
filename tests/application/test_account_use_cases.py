from __future__ import annotations

import logging

import pytest

from pos_sync.bootstrap.container import AppContainer
from pos_sync.core.errors import (
    InvalidPinError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    StaleVersionError,
    ValidationError,
)
from pos_sync.domain.models import CartLine
from tests.e2e_sync.fakes import pending_types, sign_in


def test_login_and_logout(pos: AppContainer) -> None:
    user = sign_in(pos, " 2222 ")

    assert user.name == "Store Manager"
    assert pos.session.current_user == user
    pos.session.logout()
    assert pos.session.current_user is None


@pytest.mark.parametrize("pin", ["", "9999"])
def test_login_rejects_unknown_pins(pos: AppContainer, pin: str) -> None:
    with pytest.raises(InvalidPinError):
        sign_in(pos, pin)


def test_add_user(pos: AppContainer) -> None:
    sign_in(pos, "1111")

    user = pos.users.add_user(name=" New Cashier ", role="CASHIER", pin="4444", permissions=["POS"])

    assert user.name == "New Cashier"
    assert user.permissions == ("POS",)
    assert pending_types(pos.queue) == ["ADD_USER", "LOG"]
    assert sign_in(pos, "4444").id == user.id


@pytest.mark.parametrize(
    "fields",
    [
        dict(name="X", role="CASHIER", pin="12", permissions=["POS"]),
        dict(name="X", role="CASHIER", pin="12ab", permissions=["POS"]),
        dict(name="X", role="OWNER", pin="5555", permissions=["POS"]),
        dict(name="X", role="CASHIER", pin="5555", permissions=["DELETE_ALL"]),
        dict(name="X", role="CASHIER", pin="3333", permissions=["POS"]),
        dict(name=" ", role="CASHIER", pin="5555", permissions=["POS"]),
    ],
)
def test_add_user_validation(pos: AppContainer, fields) -> None:
    sign_in(pos, "1111")

    with pytest.raises(ValidationError):
        pos.users.add_user(**fields)


def test_update_user(pos: AppContainer) -> None:
    sign_in(pos, "1111")

    updated = pos.users.update_user("u3", expected_version=1, name="Jo Cashier", pin="3334")

    assert (updated.name, updated.version) == ("Jo Cashier", 2)
    assert pos.state.get("users", "u3").pin == "3334"
    with pytest.raises(StaleVersionError):
        pos.users.update_user("u3", expected_version=1, name="Again")
    with pytest.raises(ValidationError):
        pos.users.update_user("u3", pin="2222")


def test_delete_user(pos: AppContainer) -> None:
    sign_in(pos, "1111")

    with pytest.raises(InvalidStateTransitionError):
        pos.users.delete_user("u1")
    pos.users.delete_user("u3")

    assert [user.id for user in pos.users.list_users()] == ["u1", "u2"]
    assert pending_types(pos.queue) == ["DELETE_USER", "LOG"]


def test_user_management_needs_admin(pos: AppContainer) -> None:
    sign_in(pos, "2222")

    with pytest.raises(PermissionDeniedError):
        pos.users.add_user(name="X", role="CASHIER", pin="5555", permissions=["POS"])


def test_open_and_close_shift(pos: AppContainer, clock) -> None:
    sign_in(pos, "3333")
    shift = pos.shifts.open_shift(500)
    assert pos.shifts.current_shift() == shift
    with pytest.raises(InvalidStateTransitionError):
        pos.shifts.open_shift(10)

    pos.sales.process_sale([CartLine("p3", 1)], "CASH")
    pos.sales.process_sale([CartLine("p3", 1)], "CARD")
    clock.advance(hours=8)
    closed = pos.shifts.close_shift(2400, comments="short by 99")

    assert closed.status == "CLOSED"
    assert closed.expected_cash == 500 + 1999
    assert closed.end_time > closed.start_time
    assert pos.shifts.current_shift() is None
    with pytest.raises(InvalidStateTransitionError):
        pos.shifts.close_shift(0)


def test_shift_amounts_cannot_be_negative(pos: AppContainer) -> None:
    sign_in(pos, "3333")

    with pytest.raises(ValidationError):
        pos.shifts.open_shift(-1)


def test_business_settings(pos: AppContainer) -> None:
    assert pos.business_settings.business_settings().business_name == "Grab Bottle"
    sign_in(pos, "1111")

    updated = pos.business_settings.update_business_settings(tagline="Cold drinks", phone="+254 711 000000")

    assert updated.version == 2
    assert pos.business_settings.business_settings().tagline == "Cold drinks"
    assert pending_types(pos.queue) == ["UPDATE_SETTINGS", "LOG"]
    with pytest.raises(ValidationError):
        pos.business_settings.update_business_settings(business_name="  ")


def test_audit_failure_is_logged_and_the_mutation_kept(
    pos: AppContainer, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    sign_in(pos, "1111")

    def broken(*args, **kwargs):
        raise RuntimeError("audit storage full")

    monkeypatch.setattr(pos.executor, "_audit_entry", broken)
    with caplog.at_level(logging.ERROR):
        pos.business_settings.update_business_settings(tagline="Still saved")

    assert pos.store.get("business_settings", "default")["tagline"] == "Still saved"
    assert pending_types(pos.queue) == ["UPDATE_SETTINGS"]
    assert any("Audit log write failed" in record.getMessage() for record in caplog.records)


def test_mutations_without_a_user_write_no_audit(pos: AppContainer) -> None:
    with pos.executor.mutate("system_touch", "products") as scope:
        product = scope.require("products", "p1")
        scope.save("products", scope.stamp(product, stock=25), "UPDATE_PRODUCT")
        scope.audit("SYSTEM", "touched")

    assert pending_types(pos.queue) == ["UPDATE_PRODUCT"]
    assert pos.state.get("products", "p1").stock == 25
