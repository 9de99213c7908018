"""SQLModel tables for queued mutations and their dead-letter outcomes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class PendingOp(SQLModel, table=True):
    # replay order
    __table_args__ = (Index("ix_pendingop_order", "enqueued_at", "seq"),)

    seq: Optional[int] = Field(default=None, primary_key=True)
    op_id: str = Field(index=True, unique=True)
    action: str = Field(index=True)
    target_key: Optional[str] = Field(default=None, index=True)
    payload: str
    enqueued_at: datetime = Field(default_factory=utc_now, index=True)
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


class DeadLetterOp(SQLModel, table=True):
    op_id: str = Field(primary_key=True)
    action: str
    target_key: Optional[str] = None
    payload: str
    enqueued_at: datetime
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    last_error: Optional[str] = None
    reason: str
    dead_lettered_at: datetime = Field(default_factory=utc_now, index=True)


__all__ = ["PendingOp", "DeadLetterOp"]
