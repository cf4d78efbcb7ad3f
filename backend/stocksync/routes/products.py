# Overview: Flask API routes for products, categories and store settings.

"""
Product catalog routes.

Every write goes through the coordinator: the local state changes first and
the remote write is issued or queued afterwards, so responses only reflect
local validation.
"""
from flask import Blueprint, current_app, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import StockSyncError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")
settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@products_bp.get("")
def list_products_route():
    """
    Query params:
    - category: exact category name (optional)
    - q: case-insensitive match on code or name (optional)
    """
    items = get_coordinator().list_products(
        category=request.args.get("category") or None,
        search=request.args.get("q") or None,
    )
    return jsonify({"items": items, "count": len(items)})


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().create_product(payload)
        return jsonify({"product": result.value.to_dict()}), 201
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<product_id>")
def get_product_route(product_id: str):
    try:
        return jsonify({"product": get_coordinator().get_product(product_id)})
    except StockSyncError as e:
        return json_error(e)


@products_bp.route("/<product_id>", methods=["PUT", "PATCH"])
def update_product_route(product_id: str):
    """Partial update; a changed current_stock is recorded as an adjustment movement."""
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().update_product(product_id, payload)
        return jsonify({
            "product": result.value.to_dict(),
            "movements": [m.to_dict() for m in result.movements],
        })
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<product_id>")
def delete_product_route(product_id: str):
    try:
        result = get_coordinator().delete_product(product_id)
        return jsonify({"deleted": result.value is not None, "product_id": product_id})
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<product_id>/stock-card")
def stock_card_route(product_id: str):
    try:
        return jsonify(get_coordinator().stock_card(product_id))
    except StockSyncError as e:
        return json_error(e)


@categories_bp.get("")
def list_categories_route():
    items = get_coordinator().list_categories()
    return jsonify({"items": items, "count": len(items)})


@categories_bp.post("")
def add_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().add_category(payload.get("name"))
        return jsonify({"category": result.value}), 201
    except StockSyncError as e:
        return json_error(e)


@categories_bp.delete("/<name>")
def delete_category_route(name: str):
    try:
        result = get_coordinator().delete_category(name)
        return jsonify({"deleted": result.value is not None, "category": name})
    except StockSyncError as e:
        return json_error(e)


@settings_bp.get("")
def get_settings_route():
    return jsonify({"settings": get_coordinator().get_settings()})


@settings_bp.put("")
def save_settings_route():
    payload = request.get_json(silent=True) or {}
    try:
        result = get_coordinator().save_settings(payload)
        return jsonify({"settings": result.value.to_dict()})
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to save settings")
        return jsonify({"error": "Internal server error"}), 500
