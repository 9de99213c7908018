import os
import sys
import tempfile
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# keep settings, logs and backups out of the real user data dir
os.environ.setdefault("FIELDSYNC_DATA_DIR", tempfile.mkdtemp(prefix="fieldsync-tests-"))

import pytest

from services.connectivity import ConnectivityMonitor
from services.pending_ops_store import PendingOpsStore
from services.remote import ApplySuccess
from services.sync_engine import SyncEngine
from storage.db import create_queue_engine, init_db, session_factory_for


class FakeRemote:
    """Records every call; answers per target key, falling back to ``default``.

    A response may be a result value, an exception instance to raise, a list
    consumed one item per call, or a callable ``(action, key, record)``.
    """

    def __init__(self, responses=None, default=None):
        self.responses = dict(responses or {})
        self.default = default or ApplySuccess()
        self.calls = []

    def apply(self, action, target_key, record, timeout):
        self.calls.append((action, target_key, record, timeout))
        outcome = self.responses.get(target_key, self.default)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(action, target_key, record)
        return outcome


@pytest.fixture()
def sql_engine(tmp_path):
    engine = create_queue_engine(tmp_path / "queue.db")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(sql_engine):
    return session_factory_for(sql_engine)


@pytest.fixture()
def store(session_factory):
    return PendingOpsStore(session_factory)


@pytest.fixture()
def monitor():
    return ConnectivityMonitor(online=True)


@pytest.fixture()
def remote():
    return FakeRemote()


@pytest.fixture()
def engine(store, remote, monitor):
    return SyncEngine(store, remote, monitor, timeout=5.0)


class BlockingRemote:
    """Holds every call until ``release`` is set; ``entered`` marks the first call."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = []

    def apply(self, action, target_key, record, timeout):
        self.calls.append(target_key)
        self.entered.set()
        self.release.wait(5)
        return ApplySuccess()
