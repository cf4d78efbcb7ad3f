# Overview: Issues remote writes or queues them; drains the queue and refreshes from the remote.

"""
Remote Gateway

Write path, per op:  Attempted -> Succeeded | Enqueued

- Attempted only when online, not blocked by an authorization failure, and
  the queue is empty (a new write never overtakes queued ones).
- Any failure enqueues the op and every op after it.
- Local state is never rolled back.

Drain:
- Works on a snapshot of the queue; replays entries in order, CREATE as upsert.
- Persists the remaining queue after every entry.
- Failed entries stay in relative order with attempts/last_error updated.
- An authorization failure stops the pass and blocks the gateway.
- A pass that leaves the queue empty is followed by a full refresh.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

from ..time_utils import to_utc_z, utcnow
from .connectivity import ConnectivityMonitor
from .errors import RemoteAuthorizationError, RemoteError
from .mutations import TABLES, OpType, RemoteOp
from .remote_ledger import RemoteLedger
from .sync_queue import SyncQueue

logger = logging.getLogger(__name__)

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"
STATUS_SYNCING = "syncing"
STATUS_DEGRADED = "degraded"
STATUS_CONFIG_ERROR = "config_error"


@dataclass
class DrainResult:
    attempted: int
    succeeded: int
    remaining: int
    refreshed: bool
    status: str

    def to_dict(self) -> dict:
        return asdict(self)


class RemoteGateway:
    def __init__(
        self,
        remote: RemoteLedger,
        queue: SyncQueue,
        connectivity: ConnectivityMonitor,
        *,
        refresh_handler: Callable[[dict[str, list[dict]]], None] | None = None,
    ):
        self.remote = remote
        self.queue = queue
        self.connectivity = connectivity
        self.refresh_handler = refresh_handler
        self.auth_error: RemoteAuthorizationError | None = None
        self.last_error: str | None = None
        self.last_sync_at: datetime | None = None
        self._syncing = False
        # Serializes remote I/O. Lock order: io lock, then state lock.
        self.io_lock = threading.RLock()

    # --- state -----------------------------------------------------------------

    @property
    def blocked(self) -> bool:
        return self.auth_error is not None

    def block(self, error: RemoteAuthorizationError) -> None:
        if self.auth_error is None:
            logger.error("Remote authorization failed; remote sync disabled: %s", error.message)
        self.auth_error = error
        self.last_error = error.message

    def reset_auth(self) -> None:
        """Clear the authorization block after the configuration was fixed."""
        if self.auth_error is not None:
            logger.info("Remote authorization block cleared")
        self.auth_error = None

    def can_attempt(self) -> bool:
        return self.connectivity.is_online and not self.blocked

    def status(self) -> dict:
        pending = len(self.queue)
        if self.blocked:
            status = STATUS_CONFIG_ERROR
            message = f"Remote access denied ({', '.join(self.auth_error.collections) or 'unknown table'}). Check the remote configuration."
        elif not self.connectivity.is_online:
            status = STATUS_OFFLINE
            message = f"Offline; {pending} change(s) waiting to sync." if pending else "Offline."
        elif self._syncing:
            status = STATUS_SYNCING
            message = "Synchronizing with the remote."
        elif pending:
            status = STATUS_DEGRADED
            message = f"{pending} change(s) could not be synced yet."
        else:
            status = STATUS_ONLINE
            message = "All changes synced."
        return {
            "status": status,
            "message": message,
            "pending": pending,
            "online": self.connectivity.is_online,
            "blocked": self.blocked,
            "last_error": self.last_error,
            "last_sync_at": to_utc_z(self.last_sync_at),
        }

    # --- writes ------------------------------------------------------------------

    def _apply(self, op: RemoteOp, *, replay: bool = False) -> None:
        if op.type is OpType.CREATE:
            self.remote.insert(op.table, op.payload or {}, upsert=op.upsert or replay)
        elif op.type is OpType.UPDATE:
            self.remote.update(op.table, op.record_id, op.payload or {})
        else:
            self.remote.delete(op.table, op.record_id)

    def submit(self, ops: list[RemoteOp]) -> int:
        """
        Issue ops in order, enqueuing from the first one that cannot be
        written. Returns the number of ops written immediately.
        """
        written = 0
        with self.io_lock:
            for idx, op in enumerate(ops):
                if not self.can_attempt() or not self.queue.is_empty():
                    self.queue.extend(ops[idx:])
                    logger.info("Queued %d remote write(s) starting at %s", len(ops) - idx, op.describe())
                    break
                try:
                    self._apply(op)
                    written += 1
                except RemoteAuthorizationError as e:
                    self.block(e)
                    self.queue.extend(ops[idx:])
                    break
                except RemoteError as e:
                    self.last_error = e.message
                    logger.warning("Remote write %s failed, queued for retry: %s", op.describe(), e.message)
                    self.queue.extend(ops[idx:])
                    break
        return written

    def drain(self) -> DrainResult:
        with self.io_lock:
            if not self.can_attempt():
                status = self.status()["status"]
                return DrainResult(0, 0, len(self.queue), False, status)

            snapshot = self.queue.snapshot()
            if not snapshot:
                refreshed = self._refresh_after_drain()
                return DrainResult(0, 0, 0, refreshed, self.status()["status"])

            self._syncing = True
            attempted = succeeded = 0
            failures: list[dict] = []
            stored = len(snapshot)
            try:
                for idx, entry in enumerate(snapshot):
                    try:
                        op = RemoteOp.from_entry(entry)
                    except ValueError:
                        logger.warning("Dropping malformed sync queue entry: %r", entry)
                        head = failures + snapshot[idx + 1:]
                        self.queue.replace_prefix(stored, head)
                        stored = len(head)
                        continue

                    attempted += 1
                    try:
                        self._apply(op, replay=True)
                        succeeded += 1
                    except RemoteAuthorizationError as e:
                        self.block(e)
                        failed = self._mark_failed(entry, e)
                        self.queue.replace_prefix(stored, failures + [failed] + snapshot[idx + 1:])
                        break
                    except RemoteError as e:
                        self.last_error = e.message
                        failures.append(self._mark_failed(entry, e))

                    head = failures + snapshot[idx + 1:]
                    self.queue.replace_prefix(stored, head)
                    stored = len(head)
            finally:
                self._syncing = False

            remaining = len(self.queue)
            logger.info("Sync drain: %d attempted, %d succeeded, %d remaining", attempted, succeeded, remaining)
            refreshed = False
            if remaining == 0:
                self.last_sync_at = utcnow()
                refreshed = self._refresh_after_drain()
            return DrainResult(attempted, succeeded, remaining, refreshed, self.status()["status"])

    @staticmethod
    def _mark_failed(entry: dict, error: RemoteError) -> dict:
        failed = dict(entry)
        failed["attempts"] = int(entry.get("attempts") or 0) + 1
        failed["last_error"] = error.message
        return failed

    # --- refresh -------------------------------------------------------------------

    def _refresh_after_drain(self) -> bool:
        try:
            return self.refresh()
        except RemoteAuthorizationError:
            return False
        except RemoteError as e:
            logger.warning("Refresh after drain failed: %s", e.message)
            return False

    def pull_all(self) -> dict[str, list[dict]]:
        """
        Select every record of every collection.

        Any authorization failure aborts the whole pull and blocks the
        gateway. A transient failure stops the pull and raises RemoteError,
        unless a collection was already denied.
        """
        data: dict[str, list[dict]] = {}
        denied: list[str] = []
        transient: RemoteError | None = None
        with self.io_lock:
            for table in TABLES:
                try:
                    data[table] = self.remote.select_all(table)
                except RemoteAuthorizationError:
                    denied.append(table)
                except RemoteError as e:
                    transient = e
                    break
        if denied:
            error = RemoteAuthorizationError(
                f"permission denied reading {', '.join(denied)}", denied
            )
            self.block(error)
            raise error
        if transient is not None:
            raise transient
        return data

    def refresh(self) -> bool:
        """
        Replace local collections with the remote contents. Skipped (False)
        while offline, blocked or while queued writes are waiting.

        Holds the io lock from the queue check until the handler has applied
        the pull, so no action can enqueue a write in between.
        """
        with self.io_lock:
            if not self.can_attempt() or not self.queue.is_empty():
                return False
            data = self.pull_all()
            if self.refresh_handler is not None:
                self.refresh_handler(data)
            self.last_sync_at = utcnow()
        return True
