"""Exceptions raised by the offline queue."""
from __future__ import annotations


class OfflineQueueError(Exception):
    """Base class for queue errors surfaced to callers."""


class DuplicateIdError(OfflineQueueError):
    def __init__(self, op_id: str):
        super().__init__(f"Operation id already in use: {op_id}")
        self.op_id = op_id


class OperationNotFoundError(OfflineQueueError):
    """An operation was referenced after it left the queue."""

    def __init__(self, op_id: str):
        super().__init__(f"Operation not found: {op_id}")
        self.op_id = op_id


class QueueFullError(OfflineQueueError):
    def __init__(self, limit: int):
        super().__init__(f"Offline queue is full ({limit} operations); sync before queuing more")
        self.limit = limit


class CorruptPayloadError(OfflineQueueError):
    """A stored record no longer decodes as JSON."""

    def __init__(self, detail: str):
        super().__init__(f"Stored record is not valid JSON: {detail}")
        self.detail = detail


__all__ = [
    "OfflineQueueError",
    "CorruptPayloadError",
    "DuplicateIdError",
    "OperationNotFoundError",
    "QueueFullError",
]
