# backend/stocksync/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local store lives in backend/instance/stocksync.sqlite3 unless overridden
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stocksync.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Remote ledger service. Empty URL -> in-memory remote (offline demo / tests).
    REMOTE_LEDGER_URL = os.environ.get("REMOTE_LEDGER_URL", "").strip()
    REMOTE_LEDGER_KEY = os.environ.get("REMOTE_LEDGER_KEY", "").strip()
    REMOTE_LEDGER_PATH = os.environ.get("REMOTE_LEDGER_PATH", "/rest/v1")
    REMOTE_TIMEOUT_SECONDS = _env_float("REMOTE_TIMEOUT_SECONDS", 10.0)

    SYNC_INTERVAL_SECONDS = _env_float("SYNC_INTERVAL_SECONDS", 30.0)
    START_ONLINE = _env_bool("START_ONLINE", True)

    # Bulk product import emits compensating movements for stock changes
    # (false = overwrite stock without a ledger entry).
    IMPORT_RECONCILES_STOCK = _env_bool("IMPORT_RECONCILES_STOCK", True)
    IMPORT_ERROR_DETAIL_LIMIT = int(_env_float("IMPORT_ERROR_DETAIL_LIMIT", 5))
