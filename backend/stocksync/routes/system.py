# backend/stocksync/routes/system.py
"""
System health and version endpoints.

Health covers the two dependencies every action touches: the local store
database and the remote sync state.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import LocalStoreEntry
from ..services.coordinator import get_coordinator
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_local_store_health() -> dict:
    start_time = time.time()
    try:
        entry_count = db.session.query(LocalStoreEntry).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"entries": entry_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Local store health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_sync_health() -> dict:
    """Offline or queued writes are degraded, an authorization block is unhealthy."""
    sync = get_coordinator().status()
    if sync["status"] == "config_error":
        status = "unhealthy"
    elif sync["status"] in ("offline", "degraded"):
        status = "degraded"
    else:
        status = "healthy"
    return {"status": status, "details": sync}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (local-first; the app keeps working offline)
    - 503: local store unreachable or remote access denied
    """
    start_time = time.time()

    local_store_health = check_local_store_health()
    sync_health = check_sync_health()

    all_checks = [local_store_health, sync_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "local_store": local_store_health,
            "sync": sync_health,
        },
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
