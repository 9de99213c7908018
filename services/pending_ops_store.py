from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from datetime_utils import ensure_utc, utc_now
from models.pending_op import DeadLetterOp, PendingOp
from services.errors import (
    CorruptPayloadError,
    DuplicateIdError,
    OperationNotFoundError,
    QueueFullError,
)
from storage.db import get_session


VALID_ACTIONS = ("create", "update", "delete")
DEAD_LETTER_REASONS = ("max_retries", "conflict", "corrupt")


@dataclass
class PendingOperation:
    id: str
    action: str
    record: Any
    target_key: Optional[str] = None
    enqueued_at: datetime = field(default_factory=utc_now)
    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    seq: Optional[int] = None
    # set when the stored record failed to decode; ``record`` is then None
    payload_error: Optional[str] = None


@dataclass
class DeadLetter:
    id: str
    action: str
    record: Any
    target_key: Optional[str]
    enqueued_at: datetime
    retry_count: int
    max_retries: int
    last_error: Optional[str]
    reason: str
    dead_lettered_at: datetime
    payload_error: Optional[str] = None


def _dump_payload(record: Any) -> str:
    try:
        return json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Record is not JSON serialisable: {exc}") from exc


def _load_payload(payload: Optional[str]) -> Any:
    if not payload:
        return None
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise CorruptPayloadError(str(exc)) from exc


def _decode(payload: Optional[str]):
    """Return ``(record, error)``; a corrupt row stays listable so it can be dead-lettered."""

    try:
        return _load_payload(payload), None
    except CorruptPayloadError as exc:
        return None, str(exc)


def _to_operation(row: PendingOp) -> PendingOperation:
    record, payload_error = _decode(row.payload)
    return PendingOperation(
        id=row.op_id,
        action=row.action,
        record=record,
        target_key=row.target_key,
        enqueued_at=ensure_utc(row.enqueued_at),
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        last_error=row.last_error,
        last_attempt_at=ensure_utc(row.last_attempt_at),
        seq=row.seq,
        payload_error=payload_error,
    )


def _to_dead_letter(row: DeadLetterOp) -> DeadLetter:
    record, payload_error = _decode(row.payload)
    return DeadLetter(
        id=row.op_id,
        action=row.action,
        record=record,
        target_key=row.target_key,
        enqueued_at=ensure_utc(row.enqueued_at),
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        last_error=row.last_error,
        reason=row.reason,
        dead_lettered_at=ensure_utc(row.dead_lettered_at),
        payload_error=payload_error,
    )


class PendingOpsStore:
    """Durable, ordered log of mutations that have not reached the remote store.

    Every public method takes the same re-entrant lock, so enqueue and drain
    never interleave, and every mutating call commits before it returns.
    Replay order is ``(enqueued_at, seq)``; ``seq`` is the insertion sequence.
    An id stays reserved while its dead letter is unacknowledged.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session,
        *,
        max_size: int = 0,
    ) -> None:
        self._session_factory = session_factory
        self._lock = threading.RLock()
        self.max_size = max_size

    @staticmethod
    def _find(session: Session, op_id: str) -> Optional[PendingOp]:
        return session.exec(select(PendingOp).where(PendingOp.op_id == op_id)).first()

    # ----- pending operations -----
    def append(self, op: PendingOperation) -> PendingOperation:
        if op.action not in VALID_ACTIONS:
            raise ValueError(f"Unsupported action: {op.action}")
        payload = _dump_payload(op.record)
        with self._lock, self._session_factory() as session:
            if self._find(session, op.id) is not None:
                raise DuplicateIdError(op.id)
            if session.get(DeadLetterOp, op.id) is not None:
                raise DuplicateIdError(op.id)
            if self.max_size and self._count(session) >= self.max_size:
                raise QueueFullError(self.max_size)
            row = PendingOp(
                op_id=op.id,
                action=op.action,
                target_key=op.target_key or None,
                payload=payload,
                enqueued_at=ensure_utc(op.enqueued_at),
                retry_count=op.retry_count,
                max_retries=op.max_retries,
                last_error=op.last_error,
                last_attempt_at=ensure_utc(op.last_attempt_at),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateIdError(op.id) from exc
            session.refresh(row)
            return _to_operation(row)

    def get(self, op_id: str) -> Optional[PendingOperation]:
        with self._lock, self._session_factory() as session:
            row = self._find(session, op_id)
            return _to_operation(row) if row else None

    def list_ordered(self) -> List[PendingOperation]:
        with self._lock, self._session_factory() as session:
            stmt = select(PendingOp).order_by(PendingOp.enqueued_at.asc(), PendingOp.seq.asc())
            return [_to_operation(row) for row in session.exec(stmt)]

    def list_by_action(self, action: str) -> List[PendingOperation]:
        if action not in VALID_ACTIONS:
            raise ValueError(f"Unsupported action: {action}")
        with self._lock, self._session_factory() as session:
            stmt = (
                select(PendingOp)
                .where(PendingOp.action == action)
                .order_by(PendingOp.enqueued_at.asc(), PendingOp.seq.asc())
            )
            return [_to_operation(row) for row in session.exec(stmt)]

    def update(self, op_id: str, mutator: Callable[[PendingOperation], None]) -> PendingOperation:
        """Apply ``mutator`` to the operation and persist its retry bookkeeping.

        Only ``retry_count``, ``last_error`` and ``last_attempt_at`` are written
        back; everything else is fixed at enqueue time.
        """

        with self._lock, self._session_factory() as session:
            row = self._find(session, op_id)
            if row is None:
                raise OperationNotFoundError(op_id)
            op = _to_operation(row)
            mutator(op)
            row.retry_count = min(max(op.retry_count, 0), row.max_retries)
            row.last_error = op.last_error[:1000] if op.last_error else None
            row.last_attempt_at = op.last_attempt_at
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_operation(row)

    def remove(self, op_id: str) -> None:
        with self._lock, self._session_factory() as session:
            row = self._find(session, op_id)
            if row is None:
                raise OperationNotFoundError(op_id)
            session.delete(row)
            session.commit()

    def clear_all(self) -> int:
        with self._lock, self._session_factory() as session:
            removed = self._count(session)
            session.execute(delete(PendingOp))
            session.commit()
            return removed

    @staticmethod
    def _count(session: Session) -> int:
        return int(session.exec(select(func.count()).select_from(PendingOp)).one())

    def count(self) -> int:
        with self._lock, self._session_factory() as session:
            return self._count(session)

    def count_by_action(self) -> Dict[str, int]:
        counts = {action: 0 for action in VALID_ACTIONS}
        with self._lock, self._session_factory() as session:
            stmt = select(PendingOp.action, func.count()).group_by(PendingOp.action)
            for action, total in session.exec(stmt):
                counts[action] = int(total)
        return counts

    def is_ready(self) -> bool:
        try:
            self.count()
        except SQLAlchemyError:
            return False
        return True

    # ----- dead letters -----
    def dead_letter(
        self,
        op_id: str,
        reason: str,
        error: Optional[str],
        *,
        retry_count: Optional[int] = None,
        attempted_at: Optional[datetime] = None,
    ) -> DeadLetter:
        """Move an operation out of the active queue in a single transaction."""

        if reason not in DEAD_LETTER_REASONS:
            raise ValueError(f"Unsupported dead-letter reason: {reason}")
        with self._lock, self._session_factory() as session:
            row = self._find(session, op_id)
            if row is None:
                raise OperationNotFoundError(op_id)
            attempts = row.retry_count if retry_count is None else retry_count
            letter = DeadLetterOp(
                op_id=row.op_id,
                action=row.action,
                target_key=row.target_key,
                payload=row.payload,
                enqueued_at=row.enqueued_at,
                retry_count=min(max(attempts, 0), row.max_retries),
                max_retries=row.max_retries,
                last_error=error[:1000] if error else row.last_error,
                reason=reason,
                dead_lettered_at=attempted_at or utc_now(),
            )
            session.delete(row)
            session.add(letter)
            session.commit()
            stored = session.get(DeadLetterOp, op_id)
            return _to_dead_letter(stored)

    def list_dead_letters(self) -> List[DeadLetter]:
        with self._lock, self._session_factory() as session:
            stmt = select(DeadLetterOp).order_by(DeadLetterOp.dead_lettered_at.asc())
            return [_to_dead_letter(row) for row in session.exec(stmt)]

    def remove_dead_letter(self, op_id: str) -> None:
        with self._lock, self._session_factory() as session:
            row = session.get(DeadLetterOp, op_id)
            if row is None:
                raise OperationNotFoundError(op_id)
            session.delete(row)
            session.commit()

    def clear_dead_letters(self) -> int:
        with self._lock, self._session_factory() as session:
            removed = int(session.exec(select(func.count()).select_from(DeadLetterOp)).one())
            session.execute(delete(DeadLetterOp))
            session.commit()
            return removed

    def count_dead_letters(self) -> int:
        with self._lock, self._session_factory() as session:
            return int(session.exec(select(func.count()).select_from(DeadLetterOp)).one())


__all__ = [
    "DeadLetter",
    "PendingOperation",
    "PendingOpsStore",
    "VALID_ACTIONS",
]
