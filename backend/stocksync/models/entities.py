"""
Domain entities for the store ledger.

Records cross the local store / remote boundary as JSON dicts. Each entity
knows how to build itself from such a dict (`from_dict`) and how to write
itself back (`to_dict`). Field names follow the remote table columns.

Ledger invariants (authoritative):
- StockMovement rows are append-only; reversals are new rows, never edits.
- For every product: current_stock == sum(in) - sum(out) over its movements.
- A sale only holds stock when its status is PAID or UNPAID; INDENT never does.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..time_utils import coerce_datetime, to_utc_z
from ..validation import ValidationError, lenient_float, lenient_int


def new_id() -> str:
    return str(uuid.uuid4())


def _opt_dt(value) -> datetime | None:
    try:
        return coerce_datetime(value, default_now=False)
    except ValueError:
        return None


class MovementType(str, enum.Enum):
    IN = "in"
    OUT = "out"

    @classmethod
    def parse(cls, value: Any) -> "MovementType":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            raise ValidationError(f"invalid movement type {value!r}; use 'in' or 'out'")


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    UNPAID = "unpaid"

    @classmethod
    def parse(cls, value: Any, default: "PaymentMethod | None" = None) -> "PaymentMethod":
        raw = str(value or "").strip().lower()
        if not raw and default is not None:
            return default
        try:
            return cls(raw)
        except ValueError:
            raise ValidationError(f"invalid payment method {value!r}")


class SaleStatus(str, enum.Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    INDENT = "indent"

    @classmethod
    def parse(cls, value: Any, default: "SaleStatus | None" = None) -> "SaleStatus":
        raw = str(value or "").strip().lower()
        if not raw and default is not None:
            return default
        if raw == "completed":
            return cls.PAID
        try:
            return cls(raw)
        except ValueError:
            raise ValidationError(f"invalid sale status {value!r}")

    @property
    def holds_stock(self) -> bool:
        return self is not SaleStatus.INDENT


@dataclass
class Product:
    id: str
    code: str
    name: str
    category: str = "Uncategorized"
    hpp: float = 0.0
    price: float = 0.0
    current_stock: int = 0
    unit: str = "pcs"
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "hpp": self.hpp,
            "price": self.price,
            "current_stock": self.current_stock,
            "unit": self.unit,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Product":
        if not data.get("id"):
            raise ValidationError("product record missing id")
        return cls(
            id=str(data["id"]),
            code=str(data.get("code") or ""),
            name=str(data.get("name") or ""),
            category=str(data.get("category") or "Uncategorized"),
            hpp=lenient_float(data.get("hpp")),
            price=lenient_float(data.get("price")),
            current_stock=lenient_int(data.get("current_stock")),
            unit=str(data.get("unit") or "pcs"),
            description=str(data.get("description") or ""),
            created_at=_opt_dt(data.get("created_at")),
            updated_at=_opt_dt(data.get("updated_at")),
        )


@dataclass(frozen=True)
class StockMovement:
    id: str
    product_id: str
    type: MovementType
    quantity: int
    date: datetime
    note: str = ""
    order_id: str | None = None
    sale_id: str | None = None

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.type is MovementType.IN else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type.value,
            "quantity": self.quantity,
            "date": to_utc_z(self.date),
            "note": self.note,
            "order_id": self.order_id,
            "sale_id": self.sale_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StockMovement":
        if not data.get("id") or not data.get("product_id"):
            raise ValidationError("stock movement record missing id or product_id")
        return cls(
            id=str(data["id"]),
            product_id=str(data["product_id"]),
            type=MovementType.parse(data.get("type")),
            quantity=lenient_int(data.get("quantity")),
            date=_opt_dt(data.get("date")) or _opt_dt(data.get("created_at")) or coerce_datetime(None),
            note=str(data.get("note") or ""),
            order_id=data.get("order_id") or None,
            sale_id=data.get("sale_id") or None,
        )


@dataclass
class Order:
    id: str
    order_number: str
    product_id: str
    quantity: int
    note: str = ""
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None
    approved_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "note": self.note,
            "status": self.status.value,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "approved_at": to_utc_z(self.approved_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Order":
        if not data.get("id"):
            raise ValidationError("order record missing id")
        try:
            status = OrderStatus(str(data.get("status") or "pending").lower())
        except ValueError:
            raise ValidationError(f"invalid order status {data.get('status')!r}")
        return cls(
            id=str(data["id"]),
            order_number=str(data.get("order_number") or ""),
            product_id=str(data.get("product_id") or ""),
            quantity=lenient_int(data.get("quantity")),
            note=str(data.get("note") or ""),
            status=status,
            created_at=_opt_dt(data.get("created_at")),
            updated_at=_opt_dt(data.get("updated_at")),
            approved_at=_opt_dt(data.get("approved_at")),
        )


@dataclass(frozen=True)
class SaleItem:
    product_id: str
    product_name: str
    quantity: int
    price_at_sale: float
    is_indent: bool = False

    @property
    def total(self) -> float:
        return self.quantity * self.price_at_sale

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_at_sale": self.price_at_sale,
            "total": self.total,
            "is_indent": self.is_indent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SaleItem":
        return cls(
            product_id=str(data.get("product_id") or ""),
            product_name=str(data.get("product_name") or ""),
            quantity=lenient_int(data.get("quantity")),
            price_at_sale=lenient_float(data.get("price_at_sale")),
            is_indent=bool(data.get("is_indent", False)),
        )


@dataclass
class Sale:
    id: str
    sale_number: str
    customer_name: str
    sale_date: datetime
    payment_method: PaymentMethod
    status: SaleStatus
    items: tuple[SaleItem, ...] = ()
    created_at: datetime | None = None
    paid_at: datetime | None = None

    @property
    def total_amount(self) -> float:
        return sum(item.total for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_name": self.customer_name,
            "saleDate": to_utc_z(self.sale_date),
            "payment_method": self.payment_method.value,
            "status": self.status.value,
            "items": [item.to_dict() for item in self.items],
            "total_amount": self.total_amount,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Sale":
        if not data.get("id"):
            raise ValidationError("sale record missing id")
        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValidationError("sale items must be a list")
        created_at = _opt_dt(data.get("created_at"))
        return cls(
            id=str(data["id"]),
            sale_number=str(data.get("sale_number") or ""),
            customer_name=str(data.get("customer_name") or ""),
            sale_date=_opt_dt(data.get("saleDate")) or created_at or coerce_datetime(None),
            payment_method=PaymentMethod.parse(data.get("payment_method"), PaymentMethod.CASH),
            status=SaleStatus.parse(data.get("status"), SaleStatus.PAID),
            items=tuple(SaleItem.from_dict(i) for i in items if isinstance(i, dict)),
            created_at=created_at,
            paid_at=_opt_dt(data.get("paid_at")),
        )


@dataclass
class StoreSettings:
    min_stock_limit: int = 10
    currency: str = "IDR"
    store_name: str = ""
    store_address: str = ""
    store_phone: str = ""
    store_email: str = ""

    # Remote rows and older backups use camelCase keys.
    _WIRE_KEYS = {
        "min_stock_limit": "minStockLimit",
        "currency": "currency",
        "store_name": "storeName",
        "store_address": "storeAddress",
        "store_phone": "storePhone",
        "store_email": "storeEmail",
    }

    def to_dict(self) -> dict:
        return {wire: getattr(self, attr) for attr, wire in self._WIRE_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict | None) -> "StoreSettings":
        data = data or {}
        defaults = cls()
        values: dict[str, Any] = {}
        for attr, wire in cls._WIRE_KEYS.items():
            raw = data.get(wire, data.get(attr))
            if raw is None:
                values[attr] = getattr(defaults, attr)
            elif attr == "min_stock_limit":
                values[attr] = lenient_int(raw, defaults.min_stock_limit)
            else:
                values[attr] = str(raw)
        return cls(**values)


DEFAULT_CATEGORIES = ["Elektronik", "Makanan", "Minuman", "Pakaian"]


@dataclass
class AppState:
    """
    In-memory application state. One instance is owned by the coordinator;
    mutators receive it explicitly and never reach for globals.
    """
    products: list[Product] = field(default_factory=list)
    categories: list[str] = field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    stock_movements: list[StockMovement] = field(default_factory=list)
    orders: list[Order] = field(default_factory=list)
    sales: list[Sale] = field(default_factory=list)
    settings: StoreSettings = field(default_factory=StoreSettings)

    def find_product(self, product_id: str) -> Product | None:
        return next((p for p in self.products if p.id == product_id), None)

    def find_product_by_code(self, code: str) -> Product | None:
        return next((p for p in self.products if p.code == code), None)

    def find_order(self, order_id: str) -> Order | None:
        return next((o for o in self.orders if o.id == order_id), None)

    def find_sale(self, sale_id: str) -> Sale | None:
        return next((s for s in self.sales if s.id == sale_id), None)

    def movements_for(self, product_id: str) -> list[StockMovement]:
        return [m for m in self.stock_movements if m.product_id == product_id]

    def ledger_balance(self, product_id: str) -> int:
        return sum(m.signed_quantity for m in self.stock_movements if m.product_id == product_id)
