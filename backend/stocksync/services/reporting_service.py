# Overview: Dashboard aggregates and HTML-table .xls exports; read-only over AppState.

from __future__ import annotations

import html
from datetime import datetime, timedelta

from ..models import AppState, OrderStatus, PaymentMethod, Product, SaleStatus
from ..time_utils import parse_iso_datetime, to_utc_z
from ..validation import ValidationError
from .inventory_service import stock_card


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    """
    Inclusive date range. A date-only end covers the whole day.
    Both bounds are needed; a half-open range is treated as "all time".
    """
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ValidationError("invalid date range", details={"start": start, "end": end})
    if start_dt is None or end_dt is None:
        return None, None
    if end and len(str(end).strip()) == 10:
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
    if end_dt < start_dt:
        raise ValidationError("end date is before start date", details={"start": start, "end": end})
    return start_dt, end_dt


def _in_range(value: datetime, start: datetime | None, end: datetime | None) -> bool:
    if start is None or end is None:
        return True
    return start <= value <= end


def stock_status(product: Product, min_stock_limit: int) -> str:
    if product.current_stock == 0:
        return "out"
    if product.current_stock <= min_stock_limit:
        return "low"
    return "normal"


def dashboard(state: AppState, *, category: str | None = None, start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    limit = state.settings.min_stock_limit

    products = [p for p in state.products if not category or p.category == category]
    movements = [m for m in state.stock_movements if _in_range(m.date, start_dt, end_dt)]
    sales = [s for s in state.sales if _in_range(s.sale_date, start_dt, end_dt)]
    low_stock = [p for p in products if p.current_stock <= limit]

    def total(predicate) -> float:
        return sum(s.total_amount for s in sales if predicate(s))

    return {
        "period": {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt)},
        "category": category or None,
        "total_products": len(products),
        "low_stock_count": len(low_stock),
        "low_stock": [
            {"id": p.id, "code": p.code, "name": p.name, "current_stock": p.current_stock}
            for p in sorted(low_stock, key=lambda p: p.current_stock)
        ],
        "stock_value": sum(p.current_stock * p.hpp for p in products),
        "transactions": len(movements),
        "sales": {
            "count": len(sales),
            "cash": total(lambda s: s.payment_method is PaymentMethod.CASH and s.status is not SaleStatus.INDENT),
            "transfer": total(lambda s: s.payment_method is PaymentMethod.TRANSFER and s.status is not SaleStatus.INDENT),
            "unpaid": total(lambda s: s.status in (SaleStatus.UNPAID, SaleStatus.INDENT)),
        },
        "pending_orders": sum(1 for o in state.orders if o.status is OrderStatus.PENDING),
    }


# --- exports -------------------------------------------------------------------

def render_xls(title: str, headers: list[str], rows: list[list]) -> str:
    """HTML table served with an Excel mime type."""
    out = [
        '<html xmlns:x="urn:schemas-microsoft-com:office:excel">',
        '<head><meta charset="utf-8"><title>%s</title></head>' % html.escape(title),
        "<body>",
        "<h3>%s</h3>" % html.escape(title),
        '<table border="1">',
        "<tr>" + "".join("<th>%s</th>" % html.escape(str(h)) for h in headers) + "</tr>",
    ]
    for row in rows:
        cells = "".join("<td>%s</td>" % html.escape("" if v is None else str(v)) for v in row)
        out.append("<tr>%s</tr>" % cells)
    out.extend(["</table>", "</body>", "</html>"])
    return "\n".join(out)


def export_products(state: AppState) -> str:
    limit = state.settings.min_stock_limit
    headers = [
        "Code", "Name", "Category", "Cost Price", "Sale Price", "Current Stock", "Unit",
        "Stock Value", "Potential Revenue", "Margin (%)", "Stock Status", "Description",
    ]
    rows = []
    for p in sorted(state.products, key=lambda p: p.code):
        margin = round((p.price - p.hpp) / p.price * 100, 2) if p.price > 0 else 0
        rows.append([
            p.code, p.name, p.category, p.hpp, p.price, p.current_stock, p.unit,
            p.current_stock * p.hpp, p.current_stock * p.price, margin,
            stock_status(p, limit).upper(), p.description,
        ])
    return render_xls("Products Report", headers, rows)


def export_sales(state: AppState, *, start: str | None = None, end: str | None = None) -> str:
    start_dt, end_dt = _parse_range(start, end)
    headers = [
        "Sale Number", "Date", "Customer", "Payment Method", "Status",
        "Product", "Quantity", "Price", "Line Total", "Indent",
    ]
    rows = []
    sales = sorted(
        (s for s in state.sales if _in_range(s.sale_date, start_dt, end_dt)),
        key=lambda s: s.sale_date,
    )
    for s in sales:
        for item in s.items:
            rows.append([
                s.sale_number, to_utc_z(s.sale_date), s.customer_name, s.payment_method.value,
                s.status.value, item.product_name, item.quantity, item.price_at_sale, item.total,
                "yes" if item.is_indent else "",
            ])
    title = "Sales Report"
    if start_dt and end_dt:
        title += f" {start_dt.date().isoformat()} - {end_dt.date().isoformat()}"
    return render_xls(title, headers, rows)


def export_stock_card(state: AppState, product_id: str) -> str:
    card = stock_card(state, product_id)
    product = card["product"]
    headers = ["Date", "Note", "In", "Out", "Balance"]
    rows = [[m["date"], m["note"], m["in"] or "", m["out"] or "", m["balance"]] for m in card["movements"]]
    return render_xls(f"Stock Card {product['code']} - {product['name']}", headers, rows)
