import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

from core import settings
from storage import backup as backup_module
from storage.backup import ensure_daily_backup
from storage.config import QueueConfig, load_config, save_config, update_config


def test_linux_data_dir_with_xdg():
    env = {"XDG_DATA_HOME": "/tmp/xdg"}
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="linux",
        env=env,
        home=Path("/home/test"),
    )
    assert result == Path("/tmp/xdg") / settings.APP_NAME


def test_linux_data_dir_default_home():
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="linux",
        env={},
        home=Path("/home/test"),
    )
    assert result == Path("/home/test/.local/share") / settings.APP_NAME


def test_macos_data_dir():
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="darwin",
        env={},
        home=Path("/Users/test"),
    )
    assert result == Path("/Users/test/Library/Application Support") / settings.APP_NAME


def test_windows_data_dir_appdata():
    env = {"APPDATA": "C:/Users/test/AppData/Roaming"}
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="win32",
        env=env,
        home=Path("C:/Users/test"),
    )
    assert result == Path(env["APPDATA"]) / settings.APP_NAME


def test_env_override_wins():
    env = {"FIELDSYNC_DATA_DIR": "/srv/fieldsync", "XDG_DATA_HOME": "/tmp/xdg"}
    result = settings.get_default_data_dir(settings.APP_NAME, platform="linux", env=env)
    assert result == Path("/srv/fieldsync")


def test_runtime_paths_inside_data_dir():
    assert settings.DB_PATH.parent == settings.DATA_DIR
    assert settings.CONFIG_PATH.parent == settings.DATA_DIR
    assert settings.SYNC_STATE_PATH.parent == settings.STORAGE_DIR
    assert settings.SYNC_LOG_PATH.parent == settings.LOG_DIR


def _make_db(path: Path, marker: str) -> None:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE IF NOT EXISTS marker (value TEXT)")
    conn.execute("DELETE FROM marker")
    conn.execute("INSERT INTO marker VALUES (?)", (marker,))
    conn.commit()
    conn.close()


def test_backup_rotation(monkeypatch, tmp_path):
    db_path = tmp_path / "queue.db"
    backup_dir = tmp_path / "backups"

    base = datetime(2024, 1, 1)

    for offset in range(5):
        _make_db(db_path, f"content-{offset}")

        class FakeDateTime(datetime):
            @classmethod
            def now(cls, tz=None):
                return base + timedelta(days=offset)

        monkeypatch.setattr(backup_module, "datetime", FakeDateTime)
        ensure_daily_backup(db_path, backup_dir, keep_days=3)

    monkeypatch.setattr(backup_module, "datetime", datetime)

    backups = sorted(p.name for p in backup_dir.iterdir())
    assert backups == [
        "queue_2024-01-03.db",
        "queue_2024-01-04.db",
        "queue_2024-01-05.db",
    ]
    conn = sqlite3.connect(backup_dir / "queue_2024-01-05.db")
    assert conn.execute("SELECT value FROM marker").fetchone() == ("content-4",)
    conn.close()


def test_backup_skips_missing_database(tmp_path):
    assert ensure_daily_backup(tmp_path / "absent.db", tmp_path / "backups") is None


def test_config_defaults_and_overrides(tmp_path):
    path = tmp_path / "config.json"
    assert load_config(path) == QueueConfig()

    update_config(path, max_retries=7, probe_url="https://portal.example/favicon.ico", unknown=1)
    cfg = load_config(path)
    assert cfg.max_retries == 7
    assert cfg.probe_url == "https://portal.example/favicon.ico"
    assert cfg.remote_timeout_sec == settings.SYNC.remote_timeout_sec


def test_config_ignores_corrupt_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_config(path) == QueueConfig()
    save_config(QueueConfig(auto_sync_enabled=False), path)
    assert load_config(path).auto_sync_enabled is False
