from __future__ import annotations

import threading
from typing import Callable, Optional

from core.log import get_logger
from core.settings import SYNC
from services.sync_engine import RunState, SyncEngine, SyncSession


def next_delay(base: float, failures: int, cap: float) -> float:
    """Exponential backoff between periodic runs: ``min(cap, base * 2**failures)``."""

    delay = base * (2 ** max(failures, 0))
    return float(min(cap, delay))


def _needs_backoff(session: SyncSession) -> bool:
    if session.state is RunState.ABORTED:
        return True
    return bool(session.failed or session.deferred or session.dead_lettered)


class SyncScheduler:
    """Periodic sync trigger that backs off while the remote keeps failing."""

    def __init__(
        self,
        engine: SyncEngine,
        pending_count: Callable[[], int],
        *,
        interval: float = SYNC.auto_sync_interval_sec,
        max_delay: float = SYNC.backoff_max_sec,
    ) -> None:
        self.engine = engine
        self.pending_count = pending_count
        self.interval = interval
        self.max_delay = max(max_delay, interval)
        self.failures = 0
        self.delay = float(interval)
        self.logger = get_logger("sync.scheduler")
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> Optional[SyncSession]:
        """Run one scheduled sync if there is work; returns the finished session."""

        if self.pending_count() == 0:
            self.failures = 0
            self.delay = float(self.interval)
            return None

        result = self.engine.trigger("timer", wait=True)
        session = result.session
        if not session.finished:
            # coalesced run still going after the wait; judge it next tick
            return session

        if _needs_backoff(session):
            self.failures += 1
        else:
            self.failures = 0
        self.delay = next_delay(self.interval, self.failures, self.max_delay)
        if self.failures:
            self.logger.info("Next scheduled sync in %.0fs (failures=%s)", self.delay, self.failures)
        return session

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.delay):
            try:
                self.tick()
            except Exception:
                self.logger.exception("Scheduled sync failed")


__all__ = ["SyncScheduler", "next_delay"]
