# Overview: Full JSON backup and wholesale restore of the six collections.

from __future__ import annotations

from ..models import AppState, Order, Product, Sale, StockMovement, StoreSettings
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError
from .local_store import (
    COLLECTION_KEYS,
    KEY_CATEGORIES,
    KEY_ORDERS,
    KEY_PRODUCTS,
    KEY_SALES,
    KEY_SETTINGS,
    KEY_STOCK_MOVEMENTS,
    serialize_collection,
)
from .mutations import (
    SETTINGS_ROW_ID,
    TABLE_CATEGORIES,
    TABLE_ORDERS,
    TABLE_PRODUCTS,
    TABLE_SALES,
    TABLE_SETTINGS,
    TABLE_STOCK_MOVEMENTS,
    MutationResult,
)

REQUIRED_KEYS = COLLECTION_KEYS


def build_backup(state: AppState) -> dict:
    snapshot = {key: serialize_collection(state, key) for key in COLLECTION_KEYS}
    snapshot["timestamp"] = to_utc_z(utcnow())
    return snapshot


def _records(snapshot: dict, key: str, factory) -> list:
    rows = snapshot[key]
    if not isinstance(rows, list):
        raise ValidationError(f"backup field {key!r} must be a list")
    parsed = []
    for idx, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ValidationError(f"backup {key}[{idx}] must be an object")
        parsed.append(factory(row))
    return parsed


def parse_backup(snapshot) -> AppState:
    """Validate a backup document and build the state it describes."""
    if not isinstance(snapshot, dict):
        raise ValidationError("backup must be a JSON object")
    missing = [k for k in REQUIRED_KEYS if k not in snapshot]
    if missing:
        raise ValidationError("invalid backup file: missing keys", details={"missing": missing})

    categories = snapshot[KEY_CATEGORIES]
    settings = snapshot[KEY_SETTINGS]
    if not isinstance(categories, list):
        raise ValidationError("backup field 'categories' must be a list")
    if settings is not None and not isinstance(settings, dict):
        raise ValidationError("backup field 'settings' must be an object")

    products = _records(snapshot, KEY_PRODUCTS, Product.from_dict)

    names: list[str] = []
    for name in [str(c).strip() for c in categories] + [p.category for p in products]:
        if name and name not in names:
            names.append(name)

    return AppState(
        products=products,
        categories=names,
        stock_movements=_records(snapshot, KEY_STOCK_MOVEMENTS, StockMovement.from_dict),
        orders=_records(snapshot, KEY_ORDERS, Order.from_dict),
        sales=_records(snapshot, KEY_SALES, Sale.from_dict),
        settings=StoreSettings.from_dict(settings),
    )


def restore_from_backup(state: AppState, snapshot) -> MutationResult:
    """
    Replace all six collections with the backup contents.

    Remote side: every record currently known is deleted, then the snapshot
    is re-inserted. Inserts are upserts so a partially applied restore can be
    replayed from the queue.
    """
    restored = parse_backup(snapshot)
    result = MutationResult(value=restored)

    for m in state.stock_movements:
        result.delete(TABLE_STOCK_MOVEMENTS, m.id)
    for s in state.sales:
        result.delete(TABLE_SALES, s.id)
    for o in state.orders:
        result.delete(TABLE_ORDERS, o.id)
    for p in state.products:
        result.delete(TABLE_PRODUCTS, p.id)
    for name in state.categories:
        result.delete(TABLE_CATEGORIES, name)

    for name in restored.categories:
        result.create(TABLE_CATEGORIES, {"name": name}, upsert=True)
    for p in restored.products:
        result.create(TABLE_PRODUCTS, p.to_dict(), upsert=True)
    for m in restored.stock_movements:
        result.create(TABLE_STOCK_MOVEMENTS, m.to_dict(), upsert=True)
    for o in restored.orders:
        result.create(TABLE_ORDERS, o.to_dict(), upsert=True)
    for s in restored.sales:
        result.create(TABLE_SALES, s.to_dict(), upsert=True)
    result.create(TABLE_SETTINGS, {"id": SETTINGS_ROW_ID, "data": restored.settings.to_dict()}, upsert=True)

    state.products = restored.products
    state.categories = restored.categories
    state.stock_movements = restored.stock_movements
    state.orders = restored.orders
    state.sales = restored.sales
    state.settings = restored.settings
    result.touch(*COLLECTION_KEYS)
    return result
