from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class LocalStoreEntry(db.Model):
    """
    One durable key -> JSON document.

    The local store keeps each collection (products, stockMovements, ...) and the
    pending sync queue as a single serialized document per key. Writes replace
    the whole document; there are no partial updates.
    """
    __tablename__ = "local_store_entries"

    key = db.Column(db.String(64), primary_key=True)
    value_json = db.Column(db.Text, nullable=False, default="null")
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<LocalStoreEntry key={self.key!r} bytes={len(self.value_json or '')}>"

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "bytes": len(self.value_json or ""),
            "updated_at": to_utc_z(self.updated_at),
        }
