"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``.

    ``FIELDSYNC_DATA_DIR`` in the environment overrides the platform default.
    """

    platform_id = (platform or sys.platform).lower()
    environ = dict(env if env is not None else os.environ)
    override = environ.get("FIELDSYNC_DATA_DIR")
    if override:
        return Path(override).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "FieldSync"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
LOG_DIR = DATA_DIR / "logs"
BACKUP_DIR = DATA_DIR / "backups"


DB_PATH = DATA_DIR / "queue.db"
CONFIG_PATH = DATA_DIR / "config.json"
SYNC_STATE_PATH = STORAGE_DIR / "sync_state.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class SyncSettings:
    max_retries: int = 3
    remote_timeout_sec: float = 30.0
    auto_sync_enabled: bool = True
    auto_sync_interval_sec: int = 60
    backoff_max_sec: int = 900
    sync_on_reconnect: bool = True
    sync_on_enqueue: bool = False
    max_queue_size: int = 0  # 0 = unbounded


SYNC = SyncSettings()


@dataclass(frozen=True)
class ConnectivitySettings:
    probe_interval_sec: float = 5.0
    probe_timeout_sec: float = 3.0


CONNECTIVITY = ConnectivitySettings()


@dataclass(frozen=True)
class LogSettings:
    max_bytes: int = 1_000_000
    backup_count: int = 3
    level: str = "INFO"


LOGGING = LogSettings()


@dataclass(frozen=True)
class BackupSettings:
    enabled: bool = True
    directory: Path = BACKUP_DIR
    keep_days: int = 7


BACKUP = BackupSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "LOG_DIR",
    "BACKUP_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "SYNC_STATE_PATH",
    "SYNC_LOG_PATH",
    "SYNC",
    "CONNECTIVITY",
    "LOGGING",
    "BACKUP",
    "get_default_data_dir",
]
