from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from core.log import get_logger
from core.settings import SYNC
from datetime_utils import utc_now
from services.connectivity import ConnectivityMonitor
from services.errors import OperationNotFoundError
from services.pending_ops_store import DeadLetter, PendingOperation, PendingOpsStore
from services.remote import (
    ApplyResult,
    ApplySuccess,
    ConflictFailure,
    RemoteStore,
    TransientFailure,
)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class SyncSession:
    """Tallies of one sync run. Ephemeral; never persisted."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    trigger: str = "manual"
    state: RunState = RunState.IDLE
    reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    total: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: int = 0
    dead_lettered: List[DeadLetter] = field(default_factory=list)
    progress: int = 0
    remaining: int = 0
    _done: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def running(self) -> bool:
        return self.state is RunState.RUNNING

    @property
    def finished(self) -> bool:
        return self.state in (RunState.COMPLETED, RunState.ABORTED)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed + len(self.dead_lettered) + self.deferred + self.skipped

    @property
    def dead_letter_count(self) -> int:
        return len(self.dead_lettered)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def snapshot(self) -> "SyncSession":
        return replace(self, dead_lettered=list(self.dead_lettered))


@dataclass(frozen=True)
class TriggerResult:
    session: SyncSession
    already_running: bool = False

    @property
    def started(self) -> bool:
        return not self.already_running and self.session.state is not RunState.ABORTED


SessionListener = Callable[[SyncSession], None]


class SyncEngine:
    """Replays the pending-operation log against the remote store.

    Manual calls, connectivity transitions and the periodic scheduler all go
    through :meth:`trigger`. At most one run is active; a trigger that arrives
    while a run is active gets that run's session back.
    """

    def __init__(
        self,
        store: PendingOpsStore,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        *,
        timeout: float = SYNC.remote_timeout_sec,
    ) -> None:
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.timeout = timeout
        self.logger = get_logger("sync")
        self.last_attempt_at: Optional[datetime] = None
        self._lock = threading.Lock()
        self._current: Optional[SyncSession] = None
        self._last: Optional[SyncSession] = None
        self._cancel_reason: Optional[str] = None
        self._listeners: Dict[int, SessionListener] = {}
        self._next_listener = 0

    # ------------------------------------------------------------------
    # Listeners
    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        with self._lock:
            token = self._next_listener
            self._next_listener += 1
            self._listeners[token] = listener

        def remove() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return remove

    def _notify(self, session: SyncSession) -> None:
        with self._lock:
            snapshot = session.snapshot()
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                self.logger.exception("Sync listener failed")

    # ------------------------------------------------------------------
    # Public API
    def is_running(self) -> bool:
        with self._lock:
            return self._current is not None

    def current_session(self) -> Optional[SyncSession]:
        with self._lock:
            return self._current.snapshot() if self._current else None

    def last_session(self) -> Optional[SyncSession]:
        with self._lock:
            return self._last.snapshot() if self._last else None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Ask the active run to stop after the in-flight operation."""

        with self._lock:
            if self._current is None:
                return False
            if self._cancel_reason is None:
                self._cancel_reason = reason
        self.logger.info("Cancellation requested: %s", reason)
        return True

    def trigger(
        self,
        source: str = "manual",
        *,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> TriggerResult:
        """Start a run, or hand back the one already running.

        With ``wait=True`` the run executes on the calling thread (or, when
        coalesced, the call blocks until the active run ends or ``timeout``).
        """

        with self._lock:
            existing = self._current
            if existing is None:
                session = SyncSession(trigger=source, started_at=utc_now())
                self.last_attempt_at = session.started_at
                self._cancel_reason = None
                offline = not self.connectivity.is_online()
                if not offline:
                    session.state = RunState.RUNNING
                    self._current = session

        if existing is not None:
            self.logger.debug("Sync trigger from %s coalesced into run %s", source, existing.id)
            if wait:
                existing.wait(timeout)
            return TriggerResult(session=existing, already_running=True)

        if offline:
            self.logger.info("Sync skipped: offline (trigger=%s)", source)
            self._finish(session, RunState.ABORTED, "offline")
            return TriggerResult(session=session)

        self.logger.info("Sync run %s started (trigger=%s)", session.id, source)
        if wait:
            self._run(session)
        else:
            worker = threading.Thread(target=self._run, args=(session,), name="offline-sync", daemon=True)
            worker.start()
        return TriggerResult(session=session)

    # ------------------------------------------------------------------
    # Run loop
    def _run(self, session: SyncSession) -> None:
        try:
            self._drain(session)
        except Exception as exc:
            self.logger.exception("Sync run %s crashed", session.id)
            self._finish(session, RunState.ABORTED, f"error: {exc}")

    def _drain(self, session: SyncSession) -> None:
        self._notify(session)
        try:
            snapshot = self.store.list_ordered()
        except SQLAlchemyError as exc:
            self.logger.error("Pending queue unreadable: %s", exc)
            self._finish(session, RunState.ABORTED, f"store-error: {exc}")
            return

        with self._lock:
            session.total = len(snapshot)
            session.remaining = len(snapshot)
        if not snapshot:
            self._finish(session, RunState.COMPLETED)
            return

        self.logger.info("Found %s operations to sync", len(snapshot))
        blocked_keys: Set[str] = set()
        for op in snapshot:
            with self._lock:
                cancel_reason = self._cancel_reason
            if cancel_reason is not None:
                self._finish(session, RunState.ABORTED, cancel_reason)
                return

            try:
                outcome, letter = self._process(op, blocked_keys)
            except SQLAlchemyError as exc:
                self.logger.error("Pending queue write failed on %s: %s", op.id, exc)
                self._finish(session, RunState.ABORTED, f"store-error: {exc}")
                return

            with self._lock:
                if outcome == "succeeded":
                    session.succeeded += 1
                elif outcome == "failed":
                    session.failed += 1
                elif outcome == "dead_lettered" and letter is not None:
                    session.dead_lettered.append(letter)
                elif outcome == "deferred":
                    session.deferred += 1
                else:
                    session.skipped += 1
                if outcome in ("succeeded", "failed") or (letter is not None and letter.reason != "corrupt"):
                    session.attempted += 1
                session.progress = session.processed * 100 // session.total
                session.remaining = session.total - session.succeeded - len(session.dead_lettered) - session.skipped
            self._notify(session)

        self._finish(session, RunState.COMPLETED)

    def _process(
        self, op: PendingOperation, blocked_keys: Set[str]
    ) -> Tuple[str, Optional[DeadLetter]]:
        key = op.target_key
        if key and key in blocked_keys:
            self.logger.debug("Deferring %s: earlier operation on %s did not go through", op.id, key)
            return "deferred", None

        current = self.store.get(op.id)
        if current is None:
            self.logger.warning("Operation %s left the queue before replay", op.id)
            return "skipped", None

        if current.payload_error:
            if key:
                blocked_keys.add(key)
            self.logger.error(
                "Operation %s has an unreadable record, dead-lettering: %s", current.id, current.payload_error
            )
            try:
                letter = self.store.dead_letter(current.id, "corrupt", current.payload_error)
            except OperationNotFoundError:
                return "skipped", None
            return "dead_lettered", letter

        attempted_at = utc_now()
        result = self._call_remote(current)

        if isinstance(result, ApplySuccess):
            try:
                self.store.remove(current.id)
            except OperationNotFoundError:
                self.logger.warning("Operation %s was cleared while in flight", current.id)
            self.logger.info("Synced %s %s (%s)", current.action, key or "-", current.id)
            return "succeeded", None

        if key:
            blocked_keys.add(key)
        error = result.describe()
        retries = current.retry_count + 1
        try:
            if isinstance(result, ConflictFailure):
                self.logger.warning("Conflict on %s %s, dead-lettering: %s", current.action, key, error)
                letter = self.store.dead_letter(
                    current.id, "conflict", error, retry_count=retries, attempted_at=attempted_at
                )
                return "dead_lettered", letter

            if retries >= current.max_retries:
                self.logger.warning("Max retries reached for %s: %s", current.id, error)
                letter = self.store.dead_letter(
                    current.id, "max_retries", error, retry_count=retries, attempted_at=attempted_at
                )
                return "dead_lettered", letter

            def _record_failure(pending: PendingOperation) -> None:
                pending.retry_count = retries
                pending.last_error = error
                pending.last_attempt_at = attempted_at

            self.store.update(current.id, _record_failure)
        except OperationNotFoundError:
            self.logger.warning("Operation %s was cleared while in flight", current.id)
            return "skipped", None

        self.logger.warning("Push op %s failed (%s/%s): %s", current.id, retries, current.max_retries, error)
        return "failed", None

    def _call_remote(self, op: PendingOperation) -> ApplyResult:
        try:
            result = self.remote.apply(op.action, op.target_key, op.record, self.timeout)
        except TimeoutError as exc:
            return TransientFailure(str(exc) or f"no response within {self.timeout}s", kind="timeout")
        except Exception as exc:
            self.logger.error("Push op %s crashed: %s", op.id, exc)
            return TransientFailure(f"{type(exc).__name__}: {exc}", kind="network")
        if not isinstance(result, (ApplySuccess, TransientFailure, ConflictFailure)):
            return TransientFailure(f"unexpected remote result {result!r}", kind="server")
        return result

    def _finish(self, session: SyncSession, state: RunState, reason: Optional[str] = None) -> None:
        with self._lock:
            session.state = state
            session.reason = reason
            session.finished_at = utc_now()
            session.remaining = session.total - session.succeeded - len(session.dead_lettered) - session.skipped
            if state is RunState.COMPLETED and session.total == 0:
                session.progress = 100
            self._last = session

        self.logger.info(
            "Sync run %s %s%s: succeeded=%s dead_lettered=%s remaining=%s",
            session.id,
            state.value,
            f" ({reason})" if reason else "",
            session.succeeded,
            len(session.dead_lettered),
            session.remaining,
        )
        self._notify(session)
        # release the slot only after listeners saw the final tallies
        with self._lock:
            if self._current is session:
                self._current = None
                self._cancel_reason = None
        session._done.set()


__all__ = ["RunState", "SyncEngine", "SyncSession", "TriggerResult"]
