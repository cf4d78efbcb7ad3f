# Overview: Durable FIFO outbox of remote writes, stored under the `syncQueue` key.

from __future__ import annotations

import logging

from .concurrency import StateLock
from .local_store import KEY_SYNC_QUEUE, LocalStore
from .mutations import RemoteOp

logger = logging.getLogger(__name__)


class SyncQueue:
    """
    Append-only outbox persisted through the LocalStore.

    New entries always go to the tail. A drain works on a snapshot of the
    head and writes its progress back with replace_prefix(), so entries
    appended while the drain is running are never lost.
    """

    def __init__(self, store: LocalStore, lock: StateLock | None = None):
        self.store = store
        self.lock = lock or StateLock()

    def entries(self) -> list[dict]:
        with self.lock:
            raw = self.store.read(KEY_SYNC_QUEUE)
        valid = [e for e in raw if isinstance(e, dict)]
        if len(valid) != len(raw):
            logger.warning("Dropping %d non-object sync queue entries", len(raw) - len(valid))
        return valid

    def __len__(self) -> int:
        return len(self.entries())

    def is_empty(self) -> bool:
        return len(self) == 0

    def append(self, op: RemoteOp) -> dict:
        return self.extend([op])[0]

    def extend(self, ops) -> list[dict]:
        new_entries = [op.to_entry() for op in ops]
        if not new_entries:
            return []
        with self.lock:
            self.store.write(KEY_SYNC_QUEUE, self.entries() + new_entries)
        return new_entries

    def snapshot(self) -> list[dict]:
        return [dict(e) for e in self.entries()]

    def replace_prefix(self, prefix_length: int, head: list[dict]) -> None:
        """Replace the first `prefix_length` stored entries with `head`."""
        with self.lock:
            current = self.entries()
            self.store.write(KEY_SYNC_QUEUE, list(head) + current[prefix_length:])

    def clear(self) -> None:
        with self.lock:
            self.store.write(KEY_SYNC_QUEUE, [])
