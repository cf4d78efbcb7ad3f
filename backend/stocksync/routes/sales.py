# Overview: Flask API routes for sales, indent confirmation and sale reversal.

from flask import Blueprint, current_app, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import StockSyncError

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
def list_sales_route():
    items = get_coordinator().list_sales(request.args.get("status") or None)
    return jsonify({"items": items, "count": len(items)})


@sales_bp.post("")
def create_sale_route():
    """
    Create a sale.

    Body: {customer_name, saleDate?, payment_method, items: [{product_id,
    quantity, price_at_sale?, is_indent?}]}. Any indent item makes the whole
    sale an indent sale, which does not touch stock.
    """
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().create_sale(
            payload.get("customer_name"),
            payload.get("saleDate", payload.get("sale_date")),
            payload.get("payment_method"),
            payload.get("items"),
        )
        return jsonify({"sale": result.value.to_dict()}), 201
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<sale_id>")
def get_sale_route(sale_id: str):
    try:
        return jsonify({"sale": get_coordinator().get_sale(sale_id)})
    except StockSyncError as e:
        return json_error(e)


@sales_bp.post("/<sale_id>/confirm-payment")
def confirm_payment_route(sale_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().confirm_indent_payment(sale_id, payload.get("payment_method"))
        return jsonify({"sale": result.value.to_dict()})
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to confirm indent payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<sale_id>")
def delete_sale_route(sale_id: str):
    try:
        result = get_coordinator().delete_sale(sale_id)
        return jsonify({
            "deleted": True,
            "sale_id": sale_id,
            "movements": [m.to_dict() for m in result.movements],
        })
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
