"""
Descriptions of the effects a domain mutator produced.

Mutators change the in-memory AppState and return a MutationResult listing
which local store keys must be persisted and which remote writes must follow,
in the order they have to be issued.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..models import StockMovement
from ..time_utils import to_utc_z, utcnow
from .local_store import (
    KEY_CATEGORIES,
    KEY_ORDERS,
    KEY_PRODUCTS,
    KEY_SALES,
    KEY_SETTINGS,
    KEY_STOCK_MOVEMENTS,
)

TABLE_PRODUCTS = "products"
TABLE_CATEGORIES = "categories"
TABLE_STOCK_MOVEMENTS = "stock_movements"
TABLE_ORDERS = "orders"
TABLE_SALES = "sales"
TABLE_SETTINGS = "settings"

TABLES = (
    TABLE_PRODUCTS,
    TABLE_CATEGORIES,
    TABLE_STOCK_MOVEMENTS,
    TABLE_ORDERS,
    TABLE_SALES,
    TABLE_SETTINGS,
)

# Remote table -> local store key
TABLE_TO_KEY = {
    TABLE_PRODUCTS: KEY_PRODUCTS,
    TABLE_CATEGORIES: KEY_CATEGORIES,
    TABLE_STOCK_MOVEMENTS: KEY_STOCK_MOVEMENTS,
    TABLE_ORDERS: KEY_ORDERS,
    TABLE_SALES: KEY_SALES,
    TABLE_SETTINGS: KEY_SETTINGS,
}

# Column that identifies a record in each remote table.
TABLE_KEY_FIELDS = {
    TABLE_CATEGORIES: "name",
}

SETTINGS_ROW_ID = 1


def key_field_for(table: str) -> str:
    return TABLE_KEY_FIELDS.get(table, "id")


class OpType(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class RemoteOp:
    """One remote write, also the shape of a sync queue entry."""
    type: OpType
    table: str
    record_id: str | None = None
    payload: dict | None = None
    upsert: bool = False

    def to_entry(self) -> dict:
        return {
            "type": self.type.value,
            "table": self.table,
            "id": self.record_id,
            "payload": self.payload,
            "upsert": self.upsert,
            "enqueued_at": to_utc_z(utcnow()),
            "attempts": 0,
            "last_error": None,
        }

    @classmethod
    def from_entry(cls, entry: dict) -> "RemoteOp":
        return cls(
            type=OpType(str(entry.get("type") or "").upper()),
            table=str(entry.get("table") or ""),
            record_id=entry.get("id"),
            payload=entry.get("payload"),
            upsert=bool(entry.get("upsert", False)),
        )

    def describe(self) -> str:
        target = f"{self.table}/{self.record_id}" if self.record_id else self.table
        return f"{self.type.value} {target}"


@dataclass
class MutationResult:
    value: Any = None
    ops: list[RemoteOp] = field(default_factory=list)
    movements: list[StockMovement] = field(default_factory=list)
    touched: set[str] = field(default_factory=set)

    def create(self, table: str, record: dict, *, upsert: bool = False) -> None:
        self.ops.append(RemoteOp(OpType.CREATE, table, payload=record, upsert=upsert))
        self.touched.add(TABLE_TO_KEY[table])

    def update(self, table: str, record_id: str, fields: dict) -> None:
        self.ops.append(RemoteOp(OpType.UPDATE, table, record_id=record_id, payload=fields))
        self.touched.add(TABLE_TO_KEY[table])

    def delete(self, table: str, record_id: str) -> None:
        self.ops.append(RemoteOp(OpType.DELETE, table, record_id=record_id))
        self.touched.add(TABLE_TO_KEY[table])

    def touch(self, *keys: str) -> None:
        self.touched.update(keys)

    def merge(self, other: "MutationResult") -> "MutationResult":
        self.ops.extend(other.ops)
        self.movements.extend(other.movements)
        self.touched.update(other.touched)
        return self

    @property
    def is_empty(self) -> bool:
        return not self.ops and not self.touched


def document_number(prefix: str, now: datetime | None = None) -> str:
    """Human-facing number such as ORD-123456 (last six digits of epoch millis)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"{prefix}-{str(millis)[-6:]}"
