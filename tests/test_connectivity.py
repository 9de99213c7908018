import requests

from services.connectivity import ConnectivityMonitor
from services.connectivity_probe import HttpConnectivityProbe


def test_subscribers_see_transitions_only():
    monitor = ConnectivityMonitor(online=False)
    seen = []
    monitor.subscribe(seen.append)

    monitor.report(True)
    monitor.report(True)
    monitor.report(False)

    assert seen == [True, False]
    assert monitor.is_online() is False


def test_unsubscribe_stops_notifications():
    monitor = ConnectivityMonitor()
    seen = []
    unsubscribe = monitor.subscribe(seen.append)
    monitor.report(True)
    unsubscribe()
    monitor.report(False)
    assert seen == [True]


def test_failing_handler_does_not_starve_others():
    monitor = ConnectivityMonitor()
    seen = []

    def broken(_online):
        raise RuntimeError("boom")

    monitor.subscribe(broken)
    monitor.subscribe(seen.append)
    monitor.report(True)
    assert seen == [True]


class FakeSource:
    def __init__(self, online):
        self.online = online
        self.callbacks = []

    def current_state(self):
        return self.online

    def on_transition(self, callback):
        self.callbacks.append(callback)


def test_attach_reads_state_and_follows_source():
    source = FakeSource(True)
    monitor = ConnectivityMonitor(source=source)
    assert monitor.is_online() is True

    for callback in source.callbacks:
        callback(False)
    assert monitor.is_online() is False


class FakeResponse:
    def __init__(self, ok):
        self.ok = ok


class FakeSession:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def head(self, url, timeout=None, headers=None):
        self.calls.append((url, timeout))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


def test_probe_reports_transitions_into_monitor():
    session = FakeSession([True, False, False, True])
    probe = HttpConnectivityProbe("https://portal.example/favicon.ico", timeout=3.0, session=session)
    monitor = ConnectivityMonitor(source=probe)
    seen = []
    monitor.subscribe(seen.append)

    assert monitor.is_online() is True
    probe.check()
    probe.check()
    probe.check()

    assert seen == [False, True]
    assert session.calls[0] == ("https://portal.example/favicon.ico", 3.0)


def test_probe_treats_request_errors_as_offline():
    session = FakeSession([requests.ConnectionError("no route to host")])
    probe = HttpConnectivityProbe("https://portal.example/favicon.ico", session=session)
    assert probe.current_state() is False
