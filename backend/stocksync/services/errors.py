"""
Error taxonomy for domain operations and remote synchronization.

Local errors (validation, not found, insufficient stock, invalid state) are
raised before any state is mutated. Remote errors never undo local state.
"""
from __future__ import annotations

from ..validation import StockSyncError, ValidationError

__all__ = [
    "StockSyncError",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "InvalidStateError",
    "ImportRowError",
    "RemoteError",
    "RemoteWriteError",
    "RemoteAuthorizationError",
]


class NotFoundError(StockSyncError):
    """Reference to an unknown identifier."""


class InsufficientStockError(StockSyncError):
    """Stock precondition failed; details["items"] lists every shortfall."""

    def __init__(self, message: str, shortfalls: list[dict]):
        super().__init__(message, details={"items": shortfalls})
        self.shortfalls = shortfalls


class InvalidStateError(StockSyncError):
    """State machine transition attempted from the wrong state."""


class ImportRowError(StockSyncError):
    """A single import row (or sale group) that could not be applied."""

    def __init__(self, message: str, *, row_number: int | None = None, reference: str | None = None):
        super().__init__(message, details={"row_number": row_number, "reference": reference})
        self.row_number = row_number
        self.reference = reference

    def to_dict(self) -> dict:
        return {"row_number": self.row_number, "reference": self.reference, "error": self.message}


class RemoteError(StockSyncError):
    """Transient remote failure (network, timeout, backend rejection). Retryable."""


class RemoteWriteError(RemoteError):
    """A remote insert/update/delete did not succeed; the write is queued."""


class RemoteAuthorizationError(RemoteError):
    """Permission denied by the remote. Fatal until the configuration is fixed."""

    def __init__(self, message: str, collections: list[str] | None = None):
        super().__init__(message, details={"collections": list(collections or [])})
        self.collections = list(collections or [])
