# Overview: Flask API routes for JSON backup download and wholesale restore.

import json

from flask import Blueprint, Response, current_app, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import StockSyncError

backup_bp = Blueprint("backup", __name__, url_prefix="/api/backup")


@backup_bp.get("")
def download_backup_route():
    snapshot = get_coordinator().build_backup()
    stamp = snapshot["timestamp"][:10]
    return Response(
        json.dumps(snapshot, ensure_ascii=False, indent=2),
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename=backup-{stamp}.json"},
    )


@backup_bp.post("/restore")
def restore_route():
    """Body: the backup JSON, or a multipart `file`. Replaces all local data."""
    try:
        if "file" in request.files:
            try:
                snapshot = json.load(request.files["file"].stream)
            except ValueError:
                return jsonify({"error": "backup file is not valid JSON"}), 400
        else:
            snapshot = request.get_json(silent=True)
        result = get_coordinator().restore_from_backup(snapshot)
        restored = result.value
        return jsonify({
            "restored": True,
            "products": len(restored.products),
            "stock_movements": len(restored.stock_movements),
            "orders": len(restored.orders),
            "sales": len(restored.sales),
            "categories": len(restored.categories),
        })
    except StockSyncError as e:
        return json_error(e)
    except Exception:
        current_app.logger.exception("Failed to restore backup")
        return jsonify({"error": "Internal server error"}), 500
