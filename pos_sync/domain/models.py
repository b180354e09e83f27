from __future__ import annotations

from dataclasses import MISSING, dataclass, fields
from enum import Enum
from typing import Any, Mapping, TypeVar

M = TypeVar("M", bound="PayloadModel")


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"


class Permission(str, Enum):
    POS = "POS"
    INVENTORY = "INVENTORY"
    REPORTS = "REPORTS"
    ADMIN = "ADMIN"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    MOBILE = "MOBILE"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ShiftStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class StockChangeType(str, Enum):
    ADJUST = "ADJUST"
    RECEIVE = "RECEIVE"


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _to_wire(value: Any) -> Any:
    if isinstance(value, PayloadModel):
        return value.to_payload()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_wire(item) for item in value]
    return value


class PayloadModel:
    """Converts frozen dataclass entities to and from camelCase JSON payloads.

    Payloads are the full entity snapshots that travel through the sync queue
    and are stored locally and remotely. Subclasses list embedded entity types
    in ``_nested`` (field name -> model class).
    """

    _nested: dict[str, type["PayloadModel"]] = {}

    def to_payload(self) -> dict[str, Any]:
        return {to_camel(field.name): _to_wire(getattr(self, field.name)) for field in fields(self)}

    @classmethod
    def from_payload(cls: type[M], payload: Mapping[str, Any]) -> M:
        kwargs: dict[str, Any] = {}
        for field in fields(cls):
            key = to_camel(field.name)
            if key not in payload:
                if field.default is MISSING and field.default_factory is MISSING:
                    raise ValueError(f"{cls.__name__} payload is missing '{key}'")
                continue
            value = payload[key]
            nested = cls._nested.get(field.name)
            if nested is not None and value is not None:
                if isinstance(value, list):
                    value = tuple(nested.from_payload(item) for item in value)
                else:
                    value = nested.from_payload(value)
            elif isinstance(value, list):
                value = tuple(value)
            kwargs[field.name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class Product(PayloadModel):
    id: str
    name: str
    type: str
    size: str
    cost_price: float
    selling_price: float
    stock: int
    brand: str = ""
    sku: str = ""
    barcode: str = ""
    supplier: str | None = None
    low_stock_threshold: int = 5
    units_sold: int = 0
    last_modified_by: str | None = None
    last_modified_by_name: str | None = None
    version: int | None = None
    updated_at: str | None = None

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.low_stock_threshold


@dataclass(frozen=True)
class User(PayloadModel):
    id: str
    name: str
    role: str
    pin: str
    permissions: tuple[str, ...] = ()
    version: int | None = None
    updated_at: str | None = None

    def has_permission(self, permission: Permission | str) -> bool:
        value = permission.value if isinstance(permission, Permission) else permission
        return value in self.permissions


@dataclass(frozen=True)
class SaleItem(PayloadModel):
    """One cart line; name and size are snapshots that outlive the product."""

    product_id: str
    product_name: str
    size: str
    quantity: int
    price_at_sale: float
    cost_at_sale: float

    @property
    def line_total(self) -> float:
        return self.price_at_sale * self.quantity

    @property
    def line_cost(self) -> float:
        return self.cost_at_sale * self.quantity


@dataclass(frozen=True)
class Sale(PayloadModel):
    id: str
    timestamp: int
    cashier_id: str
    cashier_name: str
    total_amount: float
    total_cost: float
    payment_method: str
    items: tuple[SaleItem, ...] = ()
    shift_id: str | None = None
    is_voided: bool = False
    voided_at: int | None = None
    voided_by: str | None = None
    void_reason: str | None = None
    version: int | None = None
    updated_at: str | None = None

    _nested = {"items": SaleItem}


@dataclass(frozen=True)
class Shift(PayloadModel):
    id: str
    cashier_id: str
    cashier_name: str
    start_time: int
    opening_cash: float
    status: str = ShiftStatus.OPEN.value
    end_time: int | None = None
    closing_cash: float | None = None
    expected_cash: float | None = None
    comments: str | None = None
    version: int | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class AuditLog(PayloadModel):
    id: str
    timestamp: int
    user_id: str
    user_name: str
    action: str
    details: str = ""
    version: int | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class VoidRequest(PayloadModel):
    id: str
    sale_id: str
    sale: Sale
    requested_by: str
    requested_by_name: str
    requested_at: int
    reason: str
    status: str = RequestStatus.PENDING.value
    reviewed_by: str | None = None
    reviewed_by_name: str | None = None
    reviewed_at: int | None = None
    review_notes: str | None = None
    version: int | None = None
    updated_at: str | None = None

    _nested = {"sale": Sale}


@dataclass(frozen=True)
class StockChangeRequest(PayloadModel):
    id: str
    product_id: str
    product_name: str
    change_type: str
    quantity_change: int
    reason: str
    requested_by: str
    requested_by_name: str
    requested_at: int
    status: str = RequestStatus.PENDING.value
    new_cost_price: float | None = None
    reviewed_by: str | None = None
    reviewed_by_name: str | None = None
    reviewed_at: int | None = None
    review_notes: str | None = None
    version: int | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class ProductSaleLog(PayloadModel):
    """Per-line record of a completed sale, keyed ``{saleId}-{productId}``."""

    id: str
    sale_id: str
    product_id: str
    product_name: str
    size: str
    quantity: int
    price_at_sale: float
    cost_at_sale: float
    total_amount: float
    total_cost: float
    profit: float
    cashier_id: str
    cashier_name: str
    payment_method: str
    timestamp: int
    version: int | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class BusinessSettings(PayloadModel):
    id: str = "default"
    business_name: str = "Grab Bottle"
    tagline: str = ""
    phone: str = ""
    email: str = ""
    location: str = ""
    logo_url: str = ""
    receipt_footer: str = ""
    version: int | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class CartLine:
    """Input line for sale processing."""

    product_id: str
    quantity: int
    price_at_sale: float | None = None
    cost_at_sale: float | None = None


@dataclass(frozen=True)
class RemoteConfig:
    spreadsheet_id: str
    credentials_path: str
    device_id: str

    @property
    def is_complete(self) -> bool:
        return bool(self.spreadsheet_id and self.credentials_path)


@dataclass(frozen=True)
class SyncSettings:
    sync_interval_seconds: float = 5.0
    max_retries: int = 5
    remote_page_size: int = 1000
    push_timeout_seconds: float = 30.0
    push_workers: int = 8
    session_timeout_seconds: float = 300.0
    db_path: str | None = None
