# Overview: Sales (paid / unpaid / indent), indent confirmation and sale reversal.

"""
Sale status decides whether the sale holds stock:

- indent: any item flagged is_indent. Nothing is decremented; the goods are
  owed to the customer and stock is taken at confirm_indent_payment().
- unpaid: payment_method == unpaid. Stock is decremented now.
- paid: otherwise. Stock is decremented now and paid_at is set.

Every stock change carries the sale id, so deleting a sale reverses exactly
the movements it produced.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import datetime

from ..models import AppState, MovementType, PaymentMethod, Sale, SaleItem, SaleStatus, new_id
from ..time_utils import coerce_datetime, to_utc_z, utcnow
from ..validation import ValidationError, coerce_amount, coerce_positive_int, require_text
from .errors import InvalidStateError, NotFoundError
from .inventory_service import _apply_movement, check_stock, require_product
from .mutations import TABLE_SALES, MutationResult, document_number


def require_sale(state: AppState, sale_id: str) -> Sale:
    sale = state.find_sale(sale_id)
    if sale is None:
        raise NotFoundError(f"sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _build_items(state: AppState, raw_items) -> list[SaleItem]:
    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        raise ValidationError("at least one item is required")

    items: list[SaleItem] = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        product = require_product(state, require_text(raw.get("product_id"), f"items[{idx}].product_id"))
        qty = coerce_positive_int(raw.get("quantity"), f"items[{idx}].quantity")
        price = coerce_amount(raw.get("price_at_sale"), f"items[{idx}].price_at_sale", default=product.price)
        items.append(SaleItem(
            product_id=product.id,
            product_name=product.name,
            quantity=qty,
            price_at_sale=price,
            is_indent=_as_bool(raw.get("is_indent", raw.get("isIndent", False))),
        ))
    return items


def aggregate_demand(items) -> dict[str, int]:
    """Total quantity per product, in first-seen order."""
    demand: dict[str, int] = OrderedDict()
    for item in items:
        demand[item.product_id] = demand.get(item.product_id, 0) + item.quantity
    return demand


def resolve_status(items, payment_method: PaymentMethod) -> SaleStatus:
    if any(item.is_indent for item in items):
        return SaleStatus.INDENT
    if payment_method is PaymentMethod.UNPAID:
        return SaleStatus.UNPAID
    return SaleStatus.PAID


def _take_stock(state: AppState, result: MutationResult, sale: Sale, *, now: datetime) -> None:
    for item in sale.items:
        product = require_product(state, item.product_id)
        _apply_movement(
            state, result, product, MovementType.OUT, item.quantity,
            date=sale.sale_date, note=f"Sale - {sale.sale_number}", sale_id=sale.id, now=now,
        )


def create_sale(
    state: AppState,
    customer_name,
    sale_date,
    payment_method,
    items,
    *,
    status: SaleStatus | None = None,
    sale_number: str | None = None,
    now: datetime | None = None,
) -> MutationResult:
    """
    Create a sale. All items are validated, and for a stock-holding sale the
    aggregated per-product demand is checked, before anything changes.

    `status` forces a status instead of deriving it from the items (imports).
    """
    customer = require_text(customer_name, "customer_name")
    method = PaymentMethod.parse(payment_method, PaymentMethod.CASH)
    sale_items = _build_items(state, items)
    try:
        when = coerce_datetime(sale_date)
    except ValueError:
        raise ValidationError(f"invalid sale date {sale_date!r}")

    resolved = status or resolve_status(sale_items, method)
    if resolved.holds_stock:
        check_stock(state, aggregate_demand(sale_items), message="Insufficient stock for sale")

    now = now or utcnow()
    sale = Sale(
        id=new_id(),
        sale_number=sale_number or document_number("SALE", now),
        customer_name=customer,
        sale_date=when,
        payment_method=method,
        status=resolved,
        items=tuple(sale_items),
        created_at=now,
        paid_at=now if resolved is SaleStatus.PAID else None,
    )
    state.sales.append(sale)

    result = MutationResult(value=sale)
    result.create(TABLE_SALES, sale.to_dict())
    if resolved.holds_stock:
        _take_stock(state, result, sale, now=now)
    return result


def confirm_indent_payment(state: AppState, sale_id: str, payment_method=None) -> MutationResult:
    """
    Settle an indent sale. Fails with InsufficientStockError, listing every
    short item and leaving the sale at indent, while stock cannot cover it.
    """
    sale = require_sale(state, sale_id)
    if sale.status is not SaleStatus.INDENT:
        raise InvalidStateError(
            f"sale {sale.sale_number} is not an indent sale",
            details={"sale_id": sale.id, "status": sale.status.value},
        )
    default_method = sale.payment_method if sale.payment_method is not PaymentMethod.UNPAID else PaymentMethod.CASH
    method = PaymentMethod.parse(payment_method, default_method)
    if method is PaymentMethod.UNPAID:
        raise ValidationError("payment method for a settled sale cannot be unpaid")
    check_stock(state, aggregate_demand(sale.items), message="Insufficient stock to confirm indent sale")

    now = utcnow()
    sale.status = SaleStatus.PAID
    sale.payment_method = method
    sale.paid_at = now

    result = MutationResult(value=sale)
    result.update(TABLE_SALES, sale.id, {
        "status": sale.status.value,
        "payment_method": method.value,
        "paid_at": to_utc_z(now),
    })
    _take_stock(state, result, sale, now=now)
    return result


def delete_sale(state: AppState, sale_id: str) -> MutationResult:
    """
    Remove a sale. A stock-holding sale gets one compensating `in` movement
    per item whose product still exists; an indent sale never touched stock.
    """
    sale = require_sale(state, sale_id)
    result = MutationResult(value=sale)

    if sale.status.holds_stock:
        now = utcnow()
        for item in sale.items:
            product = state.find_product(item.product_id)
            if product is None:
                continue
            _apply_movement(
                state, result, product, MovementType.IN, item.quantity,
                note=f"Sale deleted - {sale.sale_number}", sale_id=sale.id, now=now,
            )

    state.sales = [s for s in state.sales if s.id != sale.id]
    result.delete(TABLE_SALES, sale.id)
    return result
