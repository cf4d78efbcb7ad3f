# Overview: Purchase order lifecycle (pending -> approved | rejected) and reversal.

from __future__ import annotations

from datetime import datetime

from ..models import AppState, MovementType, Order, OrderStatus, new_id
from ..time_utils import coerce_datetime, to_utc_z, utcnow
from ..validation import ValidationError, coerce_positive_int, optional_text
from .errors import InsufficientStockError, InvalidStateError, NotFoundError
from .inventory_service import _apply_movement, require_product, shortfall
from .mutations import TABLE_ORDERS, MutationResult, document_number


def require_order(state: AppState, order_id: str) -> Order:
    order = state.find_order(order_id)
    if order is None:
        raise NotFoundError(f"order {order_id} not found", details={"order_id": order_id})
    return order


def _require_pending(order: Order, action: str) -> None:
    if order.status is not OrderStatus.PENDING:
        raise InvalidStateError(
            f"cannot {action} order {order.order_number}: status is {order.status.value}",
            details={"order_id": order.id, "status": order.status.value},
        )


def create_order(state: AppState, product_id: str, quantity, note=None, *, now: datetime | None = None) -> MutationResult:
    """Record a pending purchase order. No stock effect until approval."""
    require_product(state, product_id)
    qty = coerce_positive_int(quantity, "quantity")

    now = now or utcnow()
    order = Order(
        id=new_id(),
        order_number=document_number("ORD", now),
        product_id=product_id,
        quantity=qty,
        note=optional_text(note),
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    state.orders.append(order)

    result = MutationResult(value=order)
    result.create(TABLE_ORDERS, order.to_dict())
    return result


def approve_order(state: AppState, order_id: str, approved_at=None) -> MutationResult:
    """
    Approve a pending order: stock += quantity through one `in` movement
    tagged with the order id.
    """
    order = require_order(state, order_id)
    _require_pending(order, "approve")
    product = require_product(state, order.product_id)
    try:
        when = coerce_datetime(approved_at)
    except ValueError:
        raise ValidationError(f"invalid approved_at {approved_at!r}")

    now = utcnow()
    result = MutationResult(value=order)
    order.status = OrderStatus.APPROVED
    order.approved_at = when
    order.updated_at = now
    result.update(TABLE_ORDERS, order.id, {
        "status": order.status.value,
        "approved_at": to_utc_z(when),
        "updated_at": to_utc_z(now),
    })
    _apply_movement(
        state, result, product, MovementType.IN, order.quantity,
        date=when, note=f"Order approved - {order.order_number}", order_id=order.id, now=now,
    )
    return result


def reject_order(state: AppState, order_id: str) -> MutationResult:
    order = require_order(state, order_id)
    _require_pending(order, "reject")

    now = utcnow()
    order.status = OrderStatus.REJECTED
    order.updated_at = now

    result = MutationResult(value=order)
    result.update(TABLE_ORDERS, order.id, {"status": order.status.value, "updated_at": to_utc_z(now)})
    return result


def delete_order(state: AppState, order_id: str) -> MutationResult:
    """
    Remove an order. An approved order is reversed first with a compensating
    `out` movement; the original `in` movement stays in the ledger.
    """
    order = require_order(state, order_id)
    product = state.find_product(order.product_id)
    result = MutationResult(value=order)

    if order.status is OrderStatus.APPROVED and product is not None:
        if product.current_stock < order.quantity:
            raise InsufficientStockError(
                f"cannot reverse order {order.order_number}: stock already consumed",
                [shortfall(product, order.quantity)],
            )
        _apply_movement(
            state, result, product, MovementType.OUT, order.quantity,
            note=f"Order deleted - {order.order_number}", order_id=order.id,
        )

    state.orders = [o for o in state.orders if o.id != order.id]
    result.delete(TABLE_ORDERS, order.id)
    return result
