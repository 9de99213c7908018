# fieldsync/storage/db.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from core.settings import BACKUP, DB_PATH
from storage.backup import ensure_daily_backup

# Ensure SQLModel metadata is populated
import models.pending_op  # noqa: F401


_engine: Optional[Engine] = None


def create_queue_engine(path: str | Path) -> Engine:
    """Engine for a queue database file; connections may cross threads."""

    db_file = Path(path)
    db_file.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_file.as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def init_db(engine: Optional[Engine] = None) -> Engine:
    actual = engine or get_engine()
    SQLModel.metadata.create_all(actual)
    if engine is None and BACKUP.enabled:
        ensure_daily_backup(DB_PATH, BACKUP.directory, keep_days=BACKUP.keep_days)
    return actual


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_queue_engine(DB_PATH)
    return _engine


def get_session() -> Session:
    return Session(get_engine())


def session_factory_for(engine: Engine) -> Callable[[], Session]:
    def factory() -> Session:
        return Session(engine)

    return factory


__all__ = ["create_queue_engine", "get_engine", "get_session", "init_db", "session_factory_for"]
