from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Online/offline flag; listeners run on every transition."""

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._listeners: list[Callable[[bool], None]] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> bool:
        """Record the current state. Returns True when it changed."""
        online = bool(online)
        with self._lock:
            changed = online != self._online
            self._online = online
        if changed:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
            for listener in list(self._listeners):
                listener(online)
        return changed

    def probe(self, remote) -> bool:
        """Ask the remote whether it is reachable and record the answer."""
        reachable = bool(remote.ping())
        self.set_online(reachable)
        return reachable
