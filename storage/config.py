"""Simple JSON-backed overrides for the sync policy."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from core.settings import CONFIG_PATH, SYNC


@dataclass
class QueueConfig:
    """User-tunable sync policy persisted to ``config.json``."""

    max_retries: int = SYNC.max_retries
    remote_timeout_sec: float = SYNC.remote_timeout_sec
    auto_sync_enabled: bool = SYNC.auto_sync_enabled
    auto_sync_interval_sec: int = SYNC.auto_sync_interval_sec
    backoff_max_sec: int = SYNC.backoff_max_sec
    sync_on_reconnect: bool = SYNC.sync_on_reconnect
    sync_on_enqueue: bool = SYNC.sync_on_enqueue
    max_queue_size: int = SYNC.max_queue_size
    probe_url: Optional[str] = None


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _load_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_config(path: Optional[Path] = None) -> QueueConfig:
    target = path or CONFIG_PATH
    data = _load_raw(target)
    known = {f.name for f in fields(QueueConfig)}
    return QueueConfig(**{key: value for key, value in data.items() if key in known})


def save_config(config: QueueConfig, path: Optional[Path] = None) -> None:
    target = path or CONFIG_PATH
    _ensure_parent(target)
    payload = json.dumps(asdict(config), ensure_ascii=False, indent=2, sort_keys=True)
    tmp = target.with_suffix(".tmp")
    try:
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(target)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def update_config(path: Optional[Path] = None, **changes: Any) -> QueueConfig:
    target = path or CONFIG_PATH
    cfg = load_config(target)
    for key, value in changes.items():
        if hasattr(cfg, key):
            setattr(cfg, key, value)
    save_config(cfg, target)
    return cfg


__all__ = ["QueueConfig", "load_config", "save_config", "update_config"]
