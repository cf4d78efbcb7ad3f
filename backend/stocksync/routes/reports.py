# Overview: Flask API routes for dashboard aggregates, ledger checks and .xls exports.

from flask import Blueprint, Response, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import StockSyncError
from ..time_utils import utcnow

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

XLS_MIMETYPE = "application/vnd.ms-excel"


def _xls(body: str, filename: str) -> Response:
    return Response(
        body,
        mimetype=XLS_MIMETYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@reports_bp.get("/dashboard")
def dashboard_route():
    """
    Query params (all optional):
    - category: restrict product figures to one category
    - start, end: ISO dates; both are needed to filter sales and movements
    """
    try:
        return jsonify(get_coordinator().dashboard(
            category=request.args.get("category") or None,
            start=request.args.get("start") or None,
            end=request.args.get("end") or None,
        ))
    except StockSyncError as e:
        return json_error(e)


@reports_bp.get("/ledger-check")
def ledger_check_route():
    mismatches = get_coordinator().verify_ledger()
    return jsonify({"consistent": not mismatches, "mismatches": mismatches})


@reports_bp.get("/products.xls")
def products_export_route():
    today = utcnow().date().isoformat()
    return _xls(get_coordinator().export("products"), f"products-report-{today}.xls")


@reports_bp.get("/sales.xls")
def sales_export_route():
    try:
        body = get_coordinator().export(
            "sales",
            start=request.args.get("start") or None,
            end=request.args.get("end") or None,
        )
    except StockSyncError as e:
        return json_error(e)
    today = utcnow().date().isoformat()
    return _xls(body, f"sales-report-{today}.xls")


@reports_bp.get("/stock-card/<product_id>.xls")
def stock_card_export_route(product_id: str):
    try:
        body = get_coordinator().export("stock-card", product_id=product_id)
    except StockSyncError as e:
        return json_error(e)
    return _xls(body, f"stock-card-{product_id}.xls")
