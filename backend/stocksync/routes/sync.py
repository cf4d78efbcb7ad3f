# Overview: Flask API routes for sync status, queue drain, refresh, connectivity and the change webhook.

from flask import Blueprint, current_app, jsonify, request

from ..responses import json_error
from ..services.coordinator import get_coordinator
from ..services.errors import RemoteAuthorizationError, RemoteError, StockSyncError
from ..services.remote_ledger import ChangeEvent

sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.get("/status")
def status_route():
    return jsonify(get_coordinator().status())


@sync_bp.get("/queue")
def queue_route():
    entries = get_coordinator().pending_entries()
    return jsonify({"items": entries, "count": len(entries)})


@sync_bp.post("/drain")
def drain_route():
    try:
        result = get_coordinator().drain()
        return jsonify(result.to_dict())
    except Exception:
        current_app.logger.exception("Failed to drain sync queue")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.post("/refresh")
def refresh_route():
    coordinator = get_coordinator()
    try:
        refreshed = coordinator.refresh()
    except RemoteAuthorizationError as e:
        return json_error(e)
    except RemoteError as e:
        return jsonify(e.to_dict()), 502
    return jsonify({"refreshed": refreshed, **coordinator.status()})


@sync_bp.post("/connectivity")
def connectivity_route():
    """Body: {online: bool}. Going online drains the queue."""
    payload = request.get_json(silent=True) or {}
    if "online" not in payload:
        return jsonify({"error": "online is required"}), 400
    return jsonify(get_coordinator().set_online(bool(payload["online"])))


@sync_bp.post("/probe")
def probe_route():
    coordinator = get_coordinator()
    reachable = coordinator.probe()
    return jsonify({"reachable": reachable, **coordinator.status()})


@sync_bp.post("/reset-auth")
def reset_auth_route():
    return jsonify(get_coordinator().reset_auth())


@sync_bp.post("/changes")
def changes_route():
    """
    Change feed webhook.

    Body: {type|eventType, table, record|new, old_record|old}, or a list of them.
    """
    payload = request.get_json(silent=True)
    events = payload if isinstance(payload, list) else [payload]
    coordinator = get_coordinator()
    try:
        parsed = [ChangeEvent.from_payload(e) for e in events]
    except StockSyncError as e:
        return json_error(e)
    delivered = sum(coordinator.remote.dispatch(event) for event in parsed)
    return jsonify({"accepted": len(parsed), "delivered": delivered}), 202
