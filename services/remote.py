"""Contract between the sync engine and the remote store client.

The client performs one create/update/delete against the authoritative store
and reports the outcome as a value rather than an exception:

* :class:`ApplySuccess` - the remote accepted the mutation.
* :class:`TransientFailure` - worth retrying later (network, timeout, busy
  server, rejected payload).
* :class:`ConflictFailure` - the remote state diverged (target gone, or a
  newer version exists); retrying cannot help.

Exceptions escaping ``apply`` are treated by the engine as transient failures.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union


@dataclass(frozen=True)
class ApplySuccess:
    remote_key: Optional[str] = None


@dataclass(frozen=True)
class TransientFailure:
    detail: str
    kind: str = "network"

    def describe(self) -> str:
        return f"{self.kind}: {self.detail}"


@dataclass(frozen=True)
class ConflictFailure:
    detail: str
    kind: str = "stale"

    def describe(self) -> str:
        return f"conflict/{self.kind}: {self.detail}"


ApplyResult = Union[ApplySuccess, TransientFailure, ConflictFailure]


class RemoteStore(Protocol):
    def apply(
        self,
        action: str,
        target_key: Optional[str],
        record: Any,
        timeout: float,
    ) -> ApplyResult:
        ...


__all__ = [
    "ApplyResult",
    "ApplySuccess",
    "ConflictFailure",
    "RemoteStore",
    "TransientFailure",
]
