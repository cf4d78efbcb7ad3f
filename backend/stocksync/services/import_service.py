# Overview: Batch imports (products, sales, stock movements) from CSV/JSON/XLSX uploads.

"""
Import Service

Best-effort batch policy: every row (or sale group) is validated and applied
on its own. A failing row is recorded as an ImportRowError and the batch goes
on; nothing already applied is rolled back.

Row numbers are spreadsheet-style: the header is row 1, the first data row
is row 2.
"""
from __future__ import annotations

import csv
import io
import json
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import IO, Any

from ..models import AppState, MovementType, SaleStatus
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError, lenient_float, lenient_int, optional_text
from .errors import ImportRowError, StockSyncError
from .inventory_service import record_stock_in, record_stock_out
from .mutations import TABLE_PRODUCTS, MutationResult
from .products_service import create_product, update_product
from .sales_service import create_sale

logger = logging.getLogger(__name__)

IMPORT_PRODUCTS = "products"
IMPORT_SALES = "sales"
IMPORT_STOCK = "stock"
IMPORT_KINDS = (IMPORT_PRODUCTS, IMPORT_SALES, IMPORT_STOCK)

EXCEL_EXTENSIONS = {"xlsx", "xlsm", "xltx", "xltm"}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

TEMPLATES = {
    IMPORT_PRODUCTS: (
        ["code", "name", "category", "hpp", "price", "current_stock", "unit", "description"],
        [["SKU001", "Sample Product", "Elektronik", "10000", "15000", "25", "pcs", "Optional description"]],
    ),
    IMPORT_SALES: (
        ["sale_number", "customer_name", "saleDate", "payment_method", "status", "product_code", "quantity", "price_at_sale"],
        [
            ["SALE-000001", "Customer A", "2024-01-15", "cash", "paid", "SKU001", "2", "15000"],
            ["SALE-000001", "Customer A", "2024-01-15", "cash", "paid", "SKU002", "1", ""],
        ],
    ),
    IMPORT_STOCK: (
        ["product_code", "type", "quantity", "date", "note"],
        [["SKU001", "in", "10", "2024-01-15", "Restock from supplier"]],
    ),
}


class UploadError(ValidationError):
    """The uploaded file could not be read as rows."""


@dataclass
class ImportReport:
    kind: str
    created: int = 0
    updated: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[ImportRowError] = field(default_factory=list)
    result: MutationResult = field(default_factory=MutationResult)

    def fail(self, error: ImportRowError) -> None:
        self.failed += 1
        self.errors.append(error)

    def summary(self, limit: int = 5) -> dict:
        message = f"{self.succeeded} succeeded, {self.failed} failed"
        if self.failed > limit:
            message += f" (showing first {limit} errors)"
        return {
            "kind": self.kind,
            "created": self.created,
            "updated": self.updated,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors[:limit]],
            "message": message,
        }


# --- upload parsing ----------------------------------------------------------

def _normalize_header(name: Any) -> str:
    """`saleDate`, `Sale Date` and `sale_date` all become `sale_date`."""
    text = _CAMEL_BOUNDARY.sub("_", str(name or "").strip())
    return text.lower().replace(" ", "_")


def _normalize_row(row: dict) -> dict:
    return {_normalize_header(k): v for k, v in row.items() if k is not None}


def parse_upload(filename: str, stream: IO[bytes]) -> list[dict]:
    """Read an uploaded .csv / .json / .xlsx file into a list of row dicts."""
    ext = (filename or "").rsplit(".", 1)[-1].lower()

    try:
        if ext == "csv":
            text = stream.read().decode("utf-8-sig")
            rows = list(csv.DictReader(io.StringIO(text)))
        elif ext == "json":
            rows = json.load(stream)
            if isinstance(rows, dict):
                rows = rows.get("rows", [])
        elif ext in EXCEL_EXTENSIONS:
            from openpyxl import load_workbook
            wb = load_workbook(stream, read_only=True, data_only=True)
            data = list(wb.active.values)
            wb.close()
            if not data:
                rows = []
            else:
                headers = [str(h) if h is not None else "" for h in data[0]]
                rows = [
                    {headers[i]: row[i] for i in range(min(len(headers), len(row)))}
                    for row in data[1:]
                    if any(cell is not None and str(cell).strip() for cell in row)
                ]
        else:
            raise UploadError(f"Unsupported file format: .{ext}" if ext else "Unsupported file format")
    except UploadError:
        raise
    except (UnicodeDecodeError, csv.Error, ValueError) as e:
        raise UploadError(f"Failed to parse upload: {e}")
    except Exception as e:
        # openpyxl raises a variety of zipfile/xml errors for corrupt workbooks
        logger.warning("Unreadable spreadsheet upload %r: %s", filename, e)
        raise UploadError("Failed to parse upload")

    if not isinstance(rows, list):
        raise UploadError("rows must be a list")
    return [_normalize_row(r) for r in rows if isinstance(r, dict)]


def template_csv(kind: str) -> str:
    if kind not in TEMPLATES:
        raise ValidationError(f"unknown import kind {kind!r}")
    headers, samples = TEMPLATES[kind]
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)
    writer.writerows(samples)
    return buf.getvalue()


def _cell(row: dict, *names: str) -> Any:
    for name in names:
        value = row.get(name)
        if value is not None and str(value).strip() != "":
            return value
    return None


def _text(row: dict, *names: str) -> str:
    return optional_text(_cell(row, *names))


# --- products ------------------------------------------------------------------

def import_products(state: AppState, rows: list[dict], *, reconcile_stock: bool = True) -> ImportReport:
    """
    Upsert products by code.

    reconcile_stock=True records a compensating movement for any stock change
    on an existing product, keeping the ledger balanced. With False the stock
    field of an existing product is overwritten and no movement is written.
    """
    report = ImportReport(kind=IMPORT_PRODUCTS)

    for idx, row in enumerate(rows):
        row_number = idx + 2
        code = _text(row, "code", "product_code")
        name = _text(row, "name", "product_name")
        if not code or not name:
            report.fail(ImportRowError("code and name are required", row_number=row_number, reference=code or None))
            continue

        data = {
            "code": code,
            "name": name,
            "category": _text(row, "category") or "Uncategorized",
            "hpp": lenient_float(_cell(row, "hpp", "cost_price")),
            "price": lenient_float(_cell(row, "price", "sale_price")),
            "unit": _text(row, "unit") or "pcs",
            "description": _text(row, "description"),
        }
        stock = max(lenient_int(_cell(row, "current_stock", "stock")), 0)

        try:
            existing = state.find_product_by_code(code)
            if existing is None:
                data["current_stock"] = stock
                report.result.merge(create_product(state, data))
                report.created += 1
            elif reconcile_stock:
                data["current_stock"] = stock
                report.result.merge(update_product(state, existing.id, data, adjustment_note="Import product (stock adjustment)"))
                report.updated += 1
            else:
                result = update_product(state, existing.id, data)
                if existing.current_stock != stock:
                    existing.current_stock = stock
                    existing.updated_at = utcnow()
                    result.update(TABLE_PRODUCTS, existing.id, {
                        "current_stock": stock,
                        "updated_at": to_utc_z(existing.updated_at),
                    })
                report.result.merge(result)
                report.updated += 1
            report.succeeded += 1
        except StockSyncError as e:
            report.fail(ImportRowError(e.message, row_number=row_number, reference=code))

    return report


# --- sales ---------------------------------------------------------------------

def _group_sales(rows: list[dict]) -> "OrderedDict[str, list[tuple[int, dict]]]":
    groups: OrderedDict[str, list[tuple[int, dict]]] = OrderedDict()
    for idx, row in enumerate(rows):
        number = _text(row, "sale_number", "invoice", "no_faktur")
        if not number:
            continue
        groups.setdefault(number, []).append((idx + 2, row))
    return groups


def _import_one_sale(state: AppState, sale_number: str, group: list[tuple[int, dict]]) -> MutationResult:
    if any(s.sale_number == sale_number for s in state.sales):
        raise ValidationError(f"sale {sale_number} already exists")

    first = group[0][1]
    status = SaleStatus.parse(_cell(first, "status"), SaleStatus.PAID)
    if status is SaleStatus.INDENT:
        raise ValidationError("indent sales cannot be imported")

    items = []
    for row_number, row in group:
        code = _text(row, "product_code", "code")
        product = state.find_product_by_code(code) if code else None
        if product is None:
            raise ValidationError(f"row {row_number}: product code {code!r} not found")
        item = {"product_id": product.id, "quantity": _cell(row, "quantity", "qty")}
        price = _cell(row, "price", "price_at_sale")
        if price is not None:
            item["price_at_sale"] = price
        items.append(item)

    payment_method = _cell(first, "payment_method")
    if payment_method is None and status is SaleStatus.UNPAID:
        payment_method = "unpaid"

    return create_sale(
        state,
        _text(first, "customer_name", "customer") or "Walk-in customer",
        _cell(first, "sale_date", "date"),
        payment_method,
        items,
        status=status,
        sale_number=sale_number,
    )


def import_sales(state: AppState, rows: list[dict]) -> ImportReport:
    """One sale per sale_number group. Rows without a sale number are skipped."""
    report = ImportReport(kind=IMPORT_SALES)

    for sale_number, group in _group_sales(rows).items():
        try:
            report.result.merge(_import_one_sale(state, sale_number, group))
        except StockSyncError as e:
            report.fail(ImportRowError(e.message, row_number=group[0][0], reference=sale_number))
            continue
        report.created += 1
        report.succeeded += 1

    return report


# --- stock movements -------------------------------------------------------------

def import_stock_movements(state: AppState, rows: list[dict]) -> ImportReport:
    report = ImportReport(kind=IMPORT_STOCK)

    for idx, row in enumerate(rows):
        row_number = idx + 2
        code = _text(row, "product_code", "code")
        try:
            product = state.find_product_by_code(code) if code else None
            if product is None:
                raise ValidationError(f"product code {code!r} not found")
            movement_type = MovementType.parse(_cell(row, "type"))
            note = _text(row, "note") or f"Import stock movement ({movement_type.value})"
            recorder = record_stock_in if movement_type is MovementType.IN else record_stock_out
            report.result.merge(recorder(state, product.id, _cell(row, "quantity", "qty"), _cell(row, "date"), note))
        except StockSyncError as e:
            report.fail(ImportRowError(e.message, row_number=row_number, reference=code or None))
            continue
        report.created += 1
        report.succeeded += 1

    return report


def run_import(state: AppState, kind: str, rows: list[dict], *, reconcile_stock: bool = True) -> ImportReport:
    rows = [_normalize_row(r) if isinstance(r, dict) else {} for r in rows]
    if kind == IMPORT_PRODUCTS:
        return import_products(state, rows, reconcile_stock=reconcile_stock)
    if kind == IMPORT_SALES:
        return import_sales(state, rows)
    if kind == IMPORT_STOCK:
        return import_stock_movements(state, rows)
    raise ValidationError(f"unknown import kind {kind!r}")
