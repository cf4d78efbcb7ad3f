# Overview: Concurrency helpers shared by the local store and the coordinator.

from __future__ import annotations

import functools
import threading
import time

from sqlalchemy.exc import OperationalError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a local store operation with retry on SQLite lock failures.

    Retries on OperationalError ("database is locked" under concurrent writers)
    with exponential backoff; the session is rolled back between attempts.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class StateLock:
    """
    Serializes every mutation of the shared application state.

    Re-entrant so a change event echoed back by the remote on the same thread
    does not deadlock. Network I/O must never happen while it is held.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()
        return False


def serialized(method):
    """Run a coordinator method while holding its state lock."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock:
            return method(self, *args, **kwargs)
    return wrapper
