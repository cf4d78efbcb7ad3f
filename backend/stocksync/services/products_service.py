# backend/stocksync/services/products_service.py
"""
Product catalog, categories and store settings mutators.

Products own current_stock, but stock only changes through a movement:
creating a product with stock emits an "initial stock" movement and editing
the stock field emits a compensating movement for the delta.
"""
from __future__ import annotations

from datetime import datetime

from ..models import AppState, MovementType, Product, StockMovement, StoreSettings, new_id
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    ValidationError,
    coerce_amount,
    coerce_int,
    optional_text,
    require_text,
)
from .inventory_service import _apply_movement, require_product
from .local_store import KEY_CATEGORIES, KEY_STOCK_MOVEMENTS
from .mutations import (
    SETTINGS_ROW_ID,
    TABLE_CATEGORIES,
    TABLE_PRODUCTS,
    TABLE_SETTINGS,
    TABLE_STOCK_MOVEMENTS,
    MutationResult,
)

PRODUCT_MUTABLE_FIELDS = ("code", "name", "category", "hpp", "price", "unit", "description")

INITIAL_STOCK_NOTE = "initial stock"
EDIT_ADJUSTMENT_NOTE = "Stock adjustment (product edit)"


def _normalize_product_fields(data: dict, *, partial: bool) -> dict:
    fields: dict = {}
    if not partial or "code" in data:
        fields["code"] = require_text(data.get("code"), "code")
    if not partial or "name" in data:
        fields["name"] = require_text(data.get("name"), "name")
    if not partial or "category" in data:
        fields["category"] = optional_text(data.get("category"), "Uncategorized")
    if not partial or "hpp" in data:
        fields["hpp"] = coerce_amount(data.get("hpp"), "hpp", default=0.0)
    if not partial or "price" in data:
        fields["price"] = coerce_amount(data.get("price"), "price", default=0.0)
    if not partial or "unit" in data:
        fields["unit"] = optional_text(data.get("unit"), "pcs")
    if not partial or "description" in data:
        fields["description"] = optional_text(data.get("description"))
    return fields


def _ensure_category(state: AppState, result: MutationResult, name: str) -> None:
    if name and name not in state.categories:
        state.categories.append(name)
        result.create(TABLE_CATEGORIES, {"name": name})


def create_product(
    state: AppState,
    data: dict,
    *,
    enforce_unique_code: bool = True,
    initial_note: str = INITIAL_STOCK_NOTE,
    now: datetime | None = None,
) -> MutationResult:
    """
    Create a product. Initial stock > 0 is recorded as one `in` movement so the
    ledger accounts for every unit from the start.
    """
    fields = _normalize_product_fields(data, partial=False)
    initial_stock = coerce_int(data.get("current_stock") or 0, "current_stock", minimum=0)
    if enforce_unique_code and state.find_product_by_code(fields["code"]) is not None:
        raise ValidationError(f"product code {fields['code']!r} already exists", details={"code": fields["code"]})

    now = now or utcnow()
    product = Product(id=new_id(), current_stock=initial_stock, created_at=now, updated_at=now, **fields)

    result = MutationResult(value=product)
    _ensure_category(state, result, product.category)
    state.products.append(product)
    result.create(TABLE_PRODUCTS, product.to_dict())

    if initial_stock > 0:
        movement = StockMovement(
            id=new_id(),
            product_id=product.id,
            type=MovementType.IN,
            quantity=initial_stock,
            date=now,
            note=initial_note,
        )
        state.stock_movements.append(movement)
        result.movements.append(movement)
        result.create(TABLE_STOCK_MOVEMENTS, movement.to_dict())
    return result


def update_product(
    state: AppState,
    product_id: str,
    data: dict,
    *,
    adjustment_note: str = EDIT_ADJUSTMENT_NOTE,
    now: datetime | None = None,
) -> MutationResult:
    """
    Apply a partial update. A changed current_stock is reconciled with the
    ledger through one compensating movement for the delta.
    """
    product = require_product(state, product_id)
    fields = _normalize_product_fields(data, partial=True)
    new_stock = None
    if "current_stock" in data:
        new_stock = coerce_int(data.get("current_stock"), "current_stock", minimum=0)

    code = fields.get("code")
    if code is not None and code != product.code:
        clash = state.find_product_by_code(code)
        if clash is not None and clash.id != product.id:
            raise ValidationError(f"product code {code!r} already exists", details={"code": code})

    now = now or utcnow()
    result = MutationResult(value=product)

    changed = {k: v for k, v in fields.items() if getattr(product, k) != v}
    if changed:
        if "category" in changed:
            _ensure_category(state, result, changed["category"])
        for key, value in changed.items():
            setattr(product, key, value)
        product.updated_at = now
        result.update(TABLE_PRODUCTS, product.id, {**changed, "updated_at": to_utc_z(now)})

    if new_stock is not None and new_stock != product.current_stock:
        delta = new_stock - product.current_stock
        _apply_movement(
            state, result, product,
            MovementType.IN if delta > 0 else MovementType.OUT,
            abs(delta),
            date=now, note=adjustment_note, now=now,
        )
    return result


def delete_product(state: AppState, product_id: str) -> MutationResult:
    """
    Remove a product and cascade to its movements.

    Idempotent: an unknown id is a no-op, since a cascade delete arriving from
    the remote may already have removed it.
    """
    result = MutationResult()
    product = state.find_product(product_id)
    if product is None:
        return result

    movements = state.movements_for(product_id)
    state.products = [p for p in state.products if p.id != product_id]
    state.stock_movements = [m for m in state.stock_movements if m.product_id != product_id]

    result.value = product
    for m in movements:
        result.delete(TABLE_STOCK_MOVEMENTS, m.id)
    result.delete(TABLE_PRODUCTS, product_id)
    result.touch(KEY_STOCK_MOVEMENTS)
    return result


def add_category(state: AppState, name) -> MutationResult:
    category = require_text(name, "category")
    if category in state.categories:
        raise ValidationError(f"category {category!r} already exists")
    result = MutationResult(value=category)
    _ensure_category(state, result, category)
    return result


def delete_category(state: AppState, name) -> MutationResult:
    """Products keep the name; categories are a weak reference."""
    category = require_text(name, "category")
    result = MutationResult()
    if category not in state.categories:
        return result
    state.categories = [c for c in state.categories if c != category]
    result.value = category
    result.delete(TABLE_CATEGORIES, category)
    result.touch(KEY_CATEGORIES)
    return result


def save_settings(state: AppState, data: dict) -> MutationResult:
    """Replace the settings singleton wholesale."""
    current = state.settings
    settings = StoreSettings(
        min_stock_limit=coerce_int(
            data.get("minStockLimit", data.get("min_stock_limit", current.min_stock_limit)),
            "minStockLimit",
            minimum=0,
        ),
        currency=require_text(data.get("currency", current.currency), "currency").upper(),
        store_name=optional_text(data.get("storeName", data.get("store_name"))),
        store_address=optional_text(data.get("storeAddress", data.get("store_address"))),
        store_phone=optional_text(data.get("storePhone", data.get("store_phone"))),
        store_email=optional_text(data.get("storeEmail", data.get("store_email"))),
    )
    state.settings = settings

    result = MutationResult(value=settings)
    result.create(TABLE_SETTINGS, {"id": SETTINGS_ROW_ID, "data": settings.to_dict()}, upsert=True)
    return result
