# Overview: Stock ledger mutators; the only place product stock changes.

"""
StockSync Inventory Invariants (authoritative)

Ledger model:
- StockMovement rows are append-only. A reversal is a new compensating row.
- For every product: current_stock == SUM(in) - SUM(out) over its movements.
- Every change to current_stock goes through _apply_movement(), which adjusts
  the product and appends the matching movement in one step.

Business invariants:
- Quantities are positive integers; direction is carried by the movement type.
- A direct stock-out may never drive current_stock below zero.

Time semantics:
- Movement dates are UTC-naive; inputs accept ISO-8601 with Z/offsets.
"""
from __future__ import annotations

from datetime import datetime

from ..models import AppState, MovementType, Product, StockMovement, new_id
from ..time_utils import coerce_datetime, to_utc_z, utcnow
from ..validation import ValidationError, coerce_positive_int, optional_text
from .errors import InsufficientStockError, NotFoundError
from .mutations import TABLE_PRODUCTS, TABLE_STOCK_MOVEMENTS, MutationResult


def _parse_movement_date(value) -> datetime:
    try:
        return coerce_datetime(value)
    except ValueError:
        raise ValidationError(f"invalid date {value!r}")


def require_product(state: AppState, product_id: str) -> Product:
    product = state.find_product(product_id)
    if product is None:
        raise NotFoundError(f"product {product_id} not found", details={"product_id": product_id})
    return product


def shortfall(product: Product, requested: int) -> dict:
    return {
        "product_id": product.id,
        "code": product.code,
        "name": product.name,
        "requested": requested,
        "available": product.current_stock,
    }


def check_stock(state: AppState, demands: dict[str, int], *, message: str) -> None:
    """
    Validate aggregated per-product demand against current stock.

    Raises InsufficientStockError listing every short product.
    """
    short = []
    for product_id, qty in demands.items():
        product = require_product(state, product_id)
        if product.current_stock < qty:
            short.append(shortfall(product, qty))
    if short:
        raise InsufficientStockError(message, short)


def _apply_movement(
    state: AppState,
    result: MutationResult,
    product: Product,
    movement_type: MovementType,
    quantity: int,
    *,
    date: datetime | None = None,
    note: str = "",
    order_id: str | None = None,
    sale_id: str | None = None,
    now: datetime | None = None,
) -> StockMovement:
    """Core stock change without validation. Callers check preconditions first."""
    now = now or utcnow()
    movement = StockMovement(
        id=new_id(),
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        date=date or now,
        note=note,
        order_id=order_id,
        sale_id=sale_id,
    )
    product.current_stock += movement.signed_quantity
    product.updated_at = now
    state.stock_movements.append(movement)

    result.movements.append(movement)
    result.update(TABLE_PRODUCTS, product.id, {
        "current_stock": product.current_stock,
        "updated_at": to_utc_z(now),
    })
    result.create(TABLE_STOCK_MOVEMENTS, movement.to_dict())
    return movement


def record_stock_in(state: AppState, product_id: str, quantity, date=None, note: str | None = None) -> MutationResult:
    product = require_product(state, product_id)
    qty = coerce_positive_int(quantity, "quantity")
    occurred = _parse_movement_date(date)

    result = MutationResult()
    result.value = _apply_movement(
        state, result, product, MovementType.IN, qty,
        date=occurred, note=optional_text(note, "Stock in"),
    )
    return result


def record_stock_out(state: AppState, product_id: str, quantity, date=None, note: str | None = None) -> MutationResult:
    """
    Remove stock. Never converts to an indent; that path exists for sales only.
    """
    product = require_product(state, product_id)
    qty = coerce_positive_int(quantity, "quantity")
    occurred = _parse_movement_date(date)
    if product.current_stock < qty:
        raise InsufficientStockError("Insufficient stock", [shortfall(product, qty)])

    result = MutationResult()
    result.value = _apply_movement(
        state, result, product, MovementType.OUT, qty,
        date=occurred, note=optional_text(note, "Stock out"),
    )
    return result


def stock_card(state: AppState, product_id: str) -> dict:
    """Chronological movements of one product with a running balance."""
    product = require_product(state, product_id)
    movements = sorted(state.movements_for(product_id), key=lambda m: m.date)

    balance = 0
    rows = []
    for m in movements:
        balance += m.signed_quantity
        rows.append({
            "id": m.id,
            "date": to_utc_z(m.date),
            "note": m.note,
            "in": m.quantity if m.type is MovementType.IN else 0,
            "out": m.quantity if m.type is MovementType.OUT else 0,
            "balance": balance,
            "order_id": m.order_id,
            "sale_id": m.sale_id,
        })

    return {
        "product": product.to_dict(),
        "movements": rows,
        "ledger_balance": balance,
        "stock_value": product.current_stock * product.hpp,
    }


def verify_ledger(state: AppState) -> list[dict]:
    """Products whose stored stock disagrees with the sum of their movements."""
    mismatches = []
    for product in state.products:
        balance = state.ledger_balance(product.id)
        if balance != product.current_stock:
            mismatches.append({
                "product_id": product.id,
                "code": product.code,
                "current_stock": product.current_stock,
                "ledger_balance": balance,
                "difference": product.current_stock - balance,
            })
    return mismatches
