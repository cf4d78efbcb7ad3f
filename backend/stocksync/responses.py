# Overview: Maps domain and sync errors to JSON HTTP responses.

from flask import jsonify

from .services.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    RemoteAuthorizationError,
    StockSyncError,
)


def status_for(exc: StockSyncError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (InsufficientStockError, InvalidStateError)):
        return 409
    if isinstance(exc, RemoteAuthorizationError):
        return 503
    return 400


def json_error(exc: StockSyncError):
    payload = exc.to_dict()
    if isinstance(exc, RemoteAuthorizationError):
        payload["status"] = "config_error"
    return jsonify(payload), status_for(exc)
