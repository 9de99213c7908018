"""Daily copies of the queue database."""
from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime, timedelta
from pathlib import Path


def _parse_backup_date(path: Path, prefix: str) -> datetime | None:
    stem = path.stem
    if not stem.startswith(prefix):
        return None
    try:
        return datetime.strptime(stem[len(prefix) :], "%Y-%m-%d")
    except ValueError:
        return None


def _copy_database(source: Path, destination: Path) -> None:
    # the online backup API gives a consistent copy while the queue is writing
    with closing(sqlite3.connect(source)) as src, closing(sqlite3.connect(destination)) as dst:
        src.backup(dst)


def _rotate(backups: Path, db_file: Path, prefix: str, cutoff) -> list[Path]:
    removed: list[Path] = []
    for file in backups.glob(f"{prefix}*{db_file.suffix}"):
        backup_date = _parse_backup_date(file, prefix)
        if backup_date is None or backup_date.date() >= cutoff:
            continue
        try:
            file.unlink()
            removed.append(file)
        except OSError:
            continue
    return removed


def ensure_daily_backup(
    db_path: str | Path,
    backup_dir: str | Path,
    *,
    keep_days: int = 7,
) -> Path | None:
    """Snapshot ``db_path`` once per day and drop copies older than ``keep_days``.

    Returns the path of the backup written by this call, or ``None`` when the
    database does not exist yet or today's copy is already present.
    """

    db_file = Path(db_path)
    if not db_file.exists():
        return None

    backups = Path(backup_dir)
    backups.mkdir(parents=True, exist_ok=True)

    today = datetime.now().date()
    prefix = f"{db_file.stem}_"
    destination = backups / f"{prefix}{today.isoformat()}{db_file.suffix}"

    created: Path | None = None
    if not destination.exists():
        _copy_database(db_file, destination)
        created = destination

    if keep_days > 0:
        _rotate(backups, db_file, prefix, today - timedelta(days=keep_days - 1))

    return created


__all__ = ["ensure_daily_backup"]
