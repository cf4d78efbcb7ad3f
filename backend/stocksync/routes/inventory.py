# Overview: Flask API routes for the stock ledger (stock in / stock out / movement history).

from flask import Blueprint, current_app, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import StockSyncError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/movements")
def list_movements_route():
    items = get_coordinator().list_movements(request.args.get("product_id") or None)
    return jsonify({"items": items, "count": len(items)})


def _record(direction: str):
    payload = request.get_json(silent=True) or {}
    coordinator = get_coordinator()
    recorder = coordinator.record_stock_in if direction == "in" else coordinator.record_stock_out
    try:
        result = recorder(
            payload.get("product_id"),
            payload.get("quantity"),
            payload.get("date"),
            payload.get("note"),
        )
        movement = result.value
        return jsonify({
            "movement": movement.to_dict(),
            "current_stock": coordinator.get_product(movement.product_id)["current_stock"],
        }), 201
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to record stock %s", direction)
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/stock-in")
def stock_in_route():
    """Body: {product_id, quantity, date?, note?}"""
    return _record("in")


@inventory_bp.post("/stock-out")
def stock_out_route():
    """Body: {product_id, quantity, date?, note?}. 409 when stock is insufficient."""
    return _record("out")
