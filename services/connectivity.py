from __future__ import annotations

import threading
from typing import Callable, Dict, Optional, Protocol

from core.log import get_logger


ConnectivityHandler = Callable[[bool], None]


class ConnectivitySource(Protocol):
    def current_state(self) -> bool:
        ...

    def on_transition(self, callback: ConnectivityHandler) -> None:
        ...


class ConnectivityMonitor:
    """Tracks online/offline state and notifies subscribers on transitions.

    The monitor never probes the network; a signal source feeds it through
    :meth:`report` (or :meth:`attach`). Handlers get the new state and may be
    called more than once for the same transition.
    """

    def __init__(self, online: bool = False, *, source: Optional[ConnectivitySource] = None):
        self._online = bool(online)
        self._handlers: Dict[int, ConnectivityHandler] = {}
        self._next_token = 0
        self._lock = threading.Lock()
        self.logger = get_logger("connectivity")
        if source is not None:
            self.attach(source)

    def attach(self, source: ConnectivitySource) -> None:
        self.report(bool(source.current_state()))
        source.on_transition(self.report)

    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def subscribe(self, handler: ConnectivityHandler) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._handlers[token] = handler

        def unsubscribe() -> None:
            with self._lock:
                self._handlers.pop(token, None)

        return unsubscribe

    def report(self, online: bool) -> None:
        online = bool(online)
        with self._lock:
            if online == self._online:
                return
            self._online = online
            handlers = list(self._handlers.values())

        self.logger.info("Network connection %s", "restored" if online else "lost")
        for handler in handlers:
            try:
                handler(online)
            except Exception:
                self.logger.exception("Connectivity handler failed")


__all__ = ["ConnectivityMonitor", "ConnectivityHandler", "ConnectivitySource"]
