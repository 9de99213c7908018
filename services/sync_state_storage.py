from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from core.settings import SYNC_STATE_PATH
from datetime_utils import parse_rfc3339, to_rfc3339_utc


class SyncStateStorage:
    """Remembers when the queue last tried to sync and how that went."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path or SYNC_STATE_PATH)

    # ------------------------------------------------------------------
    # generic helpers
    def _load(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(self.path)

    # ------------------------------------------------------------------
    def get_last_attempt(self):
        return parse_rfc3339(self._load().get("lastSyncAttempt"))

    def record_outcome(self, session) -> None:
        data = self._load()
        if session.started_at:
            data["lastSyncAttempt"] = to_rfc3339_utc(session.started_at)
        data["lastOutcome"] = {
            "sessionId": session.id,
            "trigger": session.trigger,
            "state": session.state.value,
            "reason": session.reason,
            "finishedAt": to_rfc3339_utc(session.finished_at),
            "succeeded": session.succeeded,
            "deadLettered": session.dead_letter_count,
            "remaining": session.remaining,
        }
        self._save(data)

    def get_last_outcome(self) -> Optional[Dict[str, Any]]:
        outcome = self._load().get("lastOutcome")
        return outcome if isinstance(outcome, dict) else None


__all__ = ["SyncStateStorage"]
