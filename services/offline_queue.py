"""Public face of the offline mutation queue.

Business logic hands mutations it cannot deliver right now to
:meth:`OfflineQueue.enqueue`; the presentation layer reads :meth:`status`,
lists what is pending or dead-lettered, and triggers or cancels syncs.
Everything is a point-in-time snapshot; callers re-poll or subscribe.

Build instances with :func:`build_offline_queue` (or wire the parts by hand in
tests). There is no process-wide instance.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.log import get_logger
from core.settings import SYNC
from datetime_utils import to_rfc3339_utc, utc_now
from services.connectivity import ConnectivityMonitor
from services.connectivity_probe import HttpConnectivityProbe
from services.pending_ops_store import (
    VALID_ACTIONS,
    DeadLetter,
    PendingOperation,
    PendingOpsStore,
)
from services.remote import RemoteStore
from services.sync_engine import RunState, SyncEngine, SyncSession, TriggerResult
from services.sync_scheduler import SyncScheduler
from services.sync_state_storage import SyncStateStorage
from storage.config import QueueConfig, load_config
from storage.db import create_queue_engine, init_db, session_factory_for


KEYED_ACTIONS = ("update", "delete")


@dataclass(frozen=True)
class QueueCounts:
    total: int
    by_action: Dict[str, int] = field(default_factory=dict)

    @property
    def create(self) -> int:
        return self.by_action.get("create", 0)

    @property
    def update(self) -> int:
        return self.by_action.get("update", 0)

    @property
    def delete(self) -> int:
        return self.by_action.get("delete", 0)


@dataclass(frozen=True)
class QueueStatus:
    is_online: bool
    is_syncing: bool
    sync_progress: int
    pending_total: int
    pending_by_action: Dict[str, int]
    last_sync_attempt: Optional[datetime]
    dead_letter_total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isOnline": self.is_online,
            "isSyncing": self.is_syncing,
            "syncProgress": self.sync_progress,
            "pendingTotal": self.pending_total,
            "pendingByAction": dict(self.pending_by_action),
            "lastSyncAttempt": to_rfc3339_utc(self.last_sync_attempt),
            "deadLetterTotal": self.dead_letter_total,
        }


class OfflineQueue:
    def __init__(
        self,
        store: PendingOpsStore,
        engine: SyncEngine,
        connectivity: ConnectivityMonitor,
        *,
        state_storage: Optional[SyncStateStorage] = None,
        scheduler: Optional[SyncScheduler] = None,
        probe: Optional[HttpConnectivityProbe] = None,
        max_retries: int = SYNC.max_retries,
        sync_on_reconnect: bool = SYNC.sync_on_reconnect,
        sync_on_enqueue: bool = SYNC.sync_on_enqueue,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.store = store
        self.engine = engine
        self.connectivity = connectivity
        self.state_storage = state_storage
        self.scheduler = scheduler
        self.probe = probe
        self.max_retries = max_retries
        self.sync_on_reconnect = sync_on_reconnect
        self.sync_on_enqueue = sync_on_enqueue
        self.logger = get_logger("queue")
        self._unsubscribe_connectivity: Optional[Callable[[], None]] = None
        self._remove_engine_listener = engine.add_listener(self._on_session)

    # ------------------------------------------------------------------
    # Lifetime
    def start(self) -> None:
        """Follow connectivity transitions and start periodic sync."""

        if self._unsubscribe_connectivity is None:
            self._unsubscribe_connectivity = self.connectivity.subscribe(self._on_connectivity)
        if self.probe is not None:
            self.probe.start()
        if self.scheduler is not None:
            self.scheduler.start()

    def close(self, timeout: Optional[float] = 5.0) -> None:
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None
        if self.scheduler is not None:
            self.scheduler.stop(timeout)
        if self.probe is not None:
            self.probe.stop(timeout)
        self.engine.cancel("shutdown")
        self._remove_engine_listener()

    def __enter__(self) -> "OfflineQueue":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Commands
    def enqueue(
        self,
        action: str,
        record: Any,
        target_key: Optional[str] = None,
        *,
        op_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        """Durably queue one mutation and return its id.

        Raises ``ValueError`` for an unknown action, a keyless update/delete
        or a record that is not JSON serialisable; ``DuplicateIdError`` when
        ``op_id`` is queued or still awaits dead-letter acknowledgement;
        ``QueueFullError`` under backpressure.
        """

        if action not in VALID_ACTIONS:
            raise ValueError(f"Unsupported action: {action}")
        if action in KEYED_ACTIONS and not target_key:
            raise ValueError(f"{action} requires a target key")
        retries = self.max_retries if max_retries is None else max_retries
        if retries < 1:
            raise ValueError("max_retries must be at least 1")

        op = PendingOperation(
            id=op_id or uuid.uuid4().hex,
            action=action,
            record=record,
            target_key=target_key or None,
            enqueued_at=utc_now(),
            max_retries=retries,
        )
        stored = self.store.append(op)
        self.logger.info("Queued %s %s as %s", action, target_key or "-", stored.id)

        if self.sync_on_enqueue and self.connectivity.is_online():
            self.engine.trigger("enqueue")
        return stored.id

    def start_sync(self, *, wait: bool = False, timeout: Optional[float] = None) -> TriggerResult:
        return self.engine.trigger("manual", wait=wait, timeout=timeout)

    def cancel_sync(self) -> bool:
        return self.engine.cancel("cancelled")

    def clear_all(self) -> int:
        removed = self.store.clear_all()
        self.logger.info("Cleared %s pending operations", removed)
        return removed

    def clear_one(self, op_id: str) -> None:
        self.store.remove(op_id)
        self.logger.info("Cleared pending operation %s", op_id)

    def acknowledge_dead_letter(self, op_id: str) -> None:
        self.store.remove_dead_letter(op_id)

    def clear_dead_letters(self) -> int:
        return self.store.clear_dead_letters()

    def subscribe(self, listener: Callable[[SyncSession], None]) -> Callable[[], None]:
        """Receive a session snapshot at start, after each operation and at the end."""

        return self.engine.add_listener(listener)

    # ------------------------------------------------------------------
    # Reads
    def list_pending(self) -> List[PendingOperation]:
        return self.store.list_ordered()

    def list_pending_by_action(self, action: str) -> List[PendingOperation]:
        return self.store.list_by_action(action)

    def list_dead_letters(self) -> List[DeadLetter]:
        return self.store.list_dead_letters()

    def counts(self) -> QueueCounts:
        by_action = self.store.count_by_action()
        return QueueCounts(total=sum(by_action.values()), by_action=by_action)

    def last_sync_attempt(self) -> Optional[datetime]:
        if self.engine.last_attempt_at is not None:
            return self.engine.last_attempt_at
        if self.state_storage is not None:
            return self.state_storage.get_last_attempt()
        return None

    def last_session(self) -> Optional[SyncSession]:
        return self.engine.last_session()

    def status(self) -> QueueStatus:
        counts = self.counts()
        session = self.engine.current_session() or self.engine.last_session()
        return QueueStatus(
            is_online=self.connectivity.is_online(),
            is_syncing=bool(session and session.state is RunState.RUNNING),
            sync_progress=session.progress if session else 0,
            pending_total=counts.total,
            pending_by_action=dict(counts.by_action),
            last_sync_attempt=self.last_sync_attempt(),
            dead_letter_total=self.store.count_dead_letters(),
        )

    # ------------------------------------------------------------------
    # Event hooks
    def _on_connectivity(self, online: bool) -> None:
        if not online:
            self.engine.cancel("offline")
            return
        if self.sync_on_reconnect and self.store.count() > 0:
            self.engine.trigger("connectivity")

    def _on_session(self, session: SyncSession) -> None:
        if not session.finished or self.state_storage is None:
            return
        try:
            self.state_storage.record_outcome(session)
        except OSError as exc:
            self.logger.warning("Could not persist sync outcome: %s", exc)


def build_offline_queue(
    remote: RemoteStore,
    connectivity: Optional[ConnectivityMonitor] = None,
    *,
    db_path: Optional[Path] = None,
    config: Optional[QueueConfig] = None,
    state_path: Optional[Path] = None,
) -> OfflineQueue:
    """Wire store, engine, scheduler and connectivity from settings and ``config.json``.

    Without an explicit monitor, ``config.probe_url`` enables the HTTP probe;
    otherwise the monitor starts offline and waits for :meth:`report`.
    """

    cfg = config or load_config()
    if db_path is None:
        sql_engine = init_db()
    else:
        sql_engine = init_db(create_queue_engine(db_path))
    store = PendingOpsStore(session_factory_for(sql_engine), max_size=cfg.max_queue_size)

    probe = None
    if connectivity is None:
        if cfg.probe_url:
            probe = HttpConnectivityProbe(cfg.probe_url)
            connectivity = ConnectivityMonitor(source=probe)
        else:
            connectivity = ConnectivityMonitor(online=False)

    engine = SyncEngine(store, remote, connectivity, timeout=cfg.remote_timeout_sec)
    scheduler = None
    if cfg.auto_sync_enabled:
        scheduler = SyncScheduler(
            engine,
            store.count,
            interval=cfg.auto_sync_interval_sec,
            max_delay=cfg.backoff_max_sec,
        )
    return OfflineQueue(
        store,
        engine,
        connectivity,
        state_storage=SyncStateStorage(state_path),
        scheduler=scheduler,
        probe=probe,
        max_retries=cfg.max_retries,
        sync_on_reconnect=cfg.sync_on_reconnect,
        sync_on_enqueue=cfg.sync_on_enqueue,
    )


__all__ = ["OfflineQueue", "QueueCounts", "QueueStatus", "build_offline_queue"]
