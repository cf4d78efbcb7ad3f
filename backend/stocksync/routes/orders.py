# Overview: Flask API routes for purchase orders.

from flask import Blueprint, current_app, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import StockSyncError

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
def list_orders_route():
    items = get_coordinator().list_orders(request.args.get("status") or None)
    return jsonify({"items": items, "count": len(items)})


@orders_bp.post("")
def create_order_route():
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().create_order(
            payload.get("product_id"), payload.get("quantity"), payload.get("note")
        )
        return jsonify({"order": result.value.to_dict()}), 201
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/approve")
def approve_order_route(order_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().approve_order(order_id, payload.get("approved_at"))
        return jsonify({
            "order": result.value.to_dict(),
            "movements": [m.to_dict() for m in result.movements],
        })
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to approve order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/reject")
def reject_order_route(order_id: str):
    try:
        result = get_coordinator().reject_order(order_id)
        return jsonify({"order": result.value.to_dict()})
    except StockSyncError as e:
        return json_error(e)


@orders_bp.delete("/<order_id>")
def delete_order_route(order_id: str):
    """Approved orders are reversed with a compensating movement before removal."""
    try:
        result = get_coordinator().delete_order(order_id)
        return jsonify({
            "deleted": True,
            "order_id": order_id,
            "movements": [m.to_dict() for m in result.movements],
        })
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
