# Overview: Flask API routes for batch imports; parses uploads and returns import summaries.

"""
Import Routes

Supports CSV, JSON, and Excel (.xlsx) uploads as multipart `file`, or a JSON
body {"rows": [...]}. Imports are best-effort: the response carries counts
and the first failing rows.
"""
from flask import Blueprint, Response, current_app, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import StockSyncError
from ..services.import_service import IMPORT_KINDS, parse_upload, template_csv

imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


def _bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes")


@imports_bp.post("/<kind>")
def import_route(kind: str):
    """
    Query params:
    - reconcile_stock: true|false (products only; defaults to IMPORT_RECONCILES_STOCK)
    """
    if kind not in IMPORT_KINDS:
        return jsonify({"error": f"Unknown import kind: {kind}"}), 404

    try:
        if "file" in request.files:
            file = request.files["file"]
            rows = parse_upload(file.filename or "", file.stream)
        else:
            data = request.get_json(silent=True) or {}
            rows = data.get("rows")
            if not isinstance(rows, list):
                return jsonify({"error": "file or rows is required"}), 400

        summary = get_coordinator().import_rows(kind, rows, reconcile_stock=_bool_arg("reconcile_stock"))
        return jsonify(summary), 200
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to import %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@imports_bp.get("/templates/<kind>")
def template_route(kind: str):
    if kind not in IMPORT_KINDS:
        return jsonify({"error": f"Unknown import kind: {kind}"}), 404
    return Response(
        template_csv(kind),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=template-{kind}.csv"},
    )
