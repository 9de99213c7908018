"""Real network check feeding :class:`ConnectivityMonitor`.

``navigator.onLine``-style flags lie behind captive portals, so the portal
confirms connectivity with a cheap ``HEAD`` against its own origin.
"""
from __future__ import annotations

import threading
from typing import Callable, List, Optional

import requests

from core.log import get_logger
from core.settings import CONNECTIVITY


class HttpConnectivityProbe:
    def __init__(
        self,
        url: str,
        *,
        interval: float = CONNECTIVITY.probe_interval_sec,
        timeout: float = CONNECTIVITY.probe_timeout_sec,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.interval = interval
        self.timeout = timeout
        self.session = session or requests.Session()
        self._callbacks: List[Callable[[bool], None]] = []
        self._online: Optional[bool] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = get_logger("connectivity.probe")

    def check(self) -> bool:
        """Probe once, notify on change and return the observed state."""

        try:
            response = self.session.head(self.url, timeout=self.timeout, headers={"Cache-Control": "no-cache"})
            online = bool(response.ok)
        except requests.RequestException as exc:
            self.logger.debug("Probe %s failed: %s", self.url, exc)
            online = False

        previous, self._online = self._online, online
        if previous is not None and previous != online:
            for callback in list(self._callbacks):
                callback(online)
        return online

    # ----- connectivity source contract -----
    def current_state(self) -> bool:
        if self._online is None:
            return self.check()
        return self._online

    def on_transition(self, callback: Callable[[bool], None]) -> None:
        self._callbacks.append(callback)

    # ----- polling -----
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="connectivity-probe", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.check()


__all__ = ["HttpConnectivityProbe"]
