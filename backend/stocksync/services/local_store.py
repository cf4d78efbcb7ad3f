# Overview: Durable key -> JSON persistence for the six collections and the sync queue.

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Callable, Iterable

from ..extensions import db
from ..models import (
    AppState,
    LocalStoreEntry,
    Order,
    Product,
    Sale,
    StockMovement,
    StoreSettings,
)
from ..models.entities import DEFAULT_CATEGORIES
from ..validation import ValidationError
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

KEY_PRODUCTS = "products"
KEY_CATEGORIES = "categories"
KEY_STOCK_MOVEMENTS = "stockMovements"
KEY_ORDERS = "orders"
KEY_SALES = "sales"
KEY_SETTINGS = "settings"
KEY_SYNC_QUEUE = "syncQueue"

COLLECTION_KEYS = (
    KEY_PRODUCTS,
    KEY_CATEGORIES,
    KEY_STOCK_MOVEMENTS,
    KEY_ORDERS,
    KEY_SALES,
    KEY_SETTINGS,
)

# Typed defaults returned when a key is absent or its stored value is unreadable.
DEFAULTS: dict[str, Any] = {
    KEY_PRODUCTS: [],
    KEY_CATEGORIES: list(DEFAULT_CATEGORIES),
    KEY_STOCK_MOVEMENTS: [],
    KEY_ORDERS: [],
    KEY_SALES: [],
    KEY_SETTINGS: StoreSettings().to_dict(),
    KEY_SYNC_QUEUE: [],
}


class LocalStore:
    """
    Key-value persistence backed by the `local_store_entries` table.

    read() never raises to the caller: a missing key, a JSON parse failure or
    a value of the wrong shape all return the key's typed default.
    """

    def read(self, key: str, default: Any = None) -> Any:
        fallback = copy.deepcopy(DEFAULTS.get(key) if default is None else default)
        entry = db.session.get(LocalStoreEntry, key, populate_existing=True)
        if entry is None:
            return fallback
        try:
            value = json.loads(entry.value_json)
        except (TypeError, ValueError):
            logger.error("Unreadable local store value for key %r; using default", key)
            return fallback
        if value is None or type(value) is not type(fallback):
            if value is not None:
                logger.error("Local store value for key %r has unexpected shape; using default", key)
            return fallback
        return value

    def write(self, key: str, value: Any) -> None:
        self.write_many({key: value})

    def write_many(self, values: dict[str, Any]) -> None:
        """Persist several keys in one local transaction."""
        encoded = {k: json.dumps(v, ensure_ascii=False, separators=(",", ":")) for k, v in values.items()}

        def _op():
            for key, value_json in encoded.items():
                entry = db.session.get(LocalStoreEntry, key)
                if entry is None:
                    db.session.add(LocalStoreEntry(key=key, value_json=value_json))
                else:
                    entry.value_json = value_json
            db.session.commit()

        run_with_retry(_op)

    def clear(self) -> None:
        def _op():
            db.session.query(LocalStoreEntry).delete()
            db.session.commit()
        run_with_retry(_op)

    def entries(self) -> list[dict]:
        return [e.to_dict() for e in db.session.query(LocalStoreEntry).order_by(LocalStoreEntry.key).all()]

    # --- application state -------------------------------------------------

    def load_state(self) -> AppState:
        return AppState(
            products=_parse_records(self.read(KEY_PRODUCTS), Product.from_dict, KEY_PRODUCTS),
            categories=[str(c) for c in self.read(KEY_CATEGORIES) if str(c).strip()],
            stock_movements=_parse_records(self.read(KEY_STOCK_MOVEMENTS), StockMovement.from_dict, KEY_STOCK_MOVEMENTS),
            orders=_parse_records(self.read(KEY_ORDERS), Order.from_dict, KEY_ORDERS),
            sales=_parse_records(self.read(KEY_SALES), Sale.from_dict, KEY_SALES),
            settings=StoreSettings.from_dict(self.read(KEY_SETTINGS)),
        )

    def save_state(self, state: AppState, keys: Iterable[str] = COLLECTION_KEYS) -> None:
        keys = list(keys)
        if not keys:
            return
        self.write_many({key: serialize_collection(state, key) for key in keys})


def serialize_collection(state: AppState, key: str) -> Any:
    if key == KEY_PRODUCTS:
        return [p.to_dict() for p in state.products]
    if key == KEY_CATEGORIES:
        return list(state.categories)
    if key == KEY_STOCK_MOVEMENTS:
        return [m.to_dict() for m in state.stock_movements]
    if key == KEY_ORDERS:
        return [o.to_dict() for o in state.orders]
    if key == KEY_SALES:
        return [s.to_dict() for s in state.sales]
    if key == KEY_SETTINGS:
        return state.settings.to_dict()
    raise KeyError(key)


def _parse_records(rows: list, factory: Callable[[dict], Any], key: str) -> list:
    parsed = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("Skipping non-object record in %s", key)
            continue
        try:
            parsed.append(factory(row))
        except ValidationError as exc:
            logger.warning("Skipping malformed record in %s: %s", key, exc)
    return parsed
