"""ORM models persisted by the offline queue."""
from .pending_op import DeadLetterOp, PendingOp

__all__ = ["PendingOp", "DeadLetterOp"]
