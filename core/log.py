"""Logger setup shared by the queue and the sync engine."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.settings import LOGGING, SYNC_LOG_PATH


ROOT_LOGGER = "fieldsync"


def _ensure_root(log_path: Path) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    if not logger.handlers:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler: logging.Handler = RotatingFileHandler(
                log_path,
                maxBytes=LOGGING.max_bytes,
                backupCount=LOGGING.backup_count,
                encoding="utf-8",
            )
        except OSError:
            # read-only data dir: keep logging to whatever the host configured
            handler = logging.NullHandler()
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(LOGGING.level)
    return logger


def get_logger(name: Optional[str] = None, *, log_path: Optional[Path] = None) -> logging.Logger:
    """Return ``fieldsync`` or one of its children, configuring the file handler once."""

    root = _ensure_root(Path(log_path or SYNC_LOG_PATH))
    if not name:
        return root
    return root.getChild(name)


__all__ = ["get_logger", "ROOT_LOGGER"]
