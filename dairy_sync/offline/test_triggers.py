# dairy_sync/offline/test_triggers.py
"""
ConnectivityMonitor tests: startup, reconnect and interval triggers.
"""

import threading

import pytest

from dairy_sync.offline.sync_engine import SyncEngine
from dairy_sync.offline.triggers import ConnectivityMonitor

TENANT = 'tenant-a'


@pytest.fixture
def engine(store, gateway):
    return SyncEngine(TENANT, store, gateway)


def test_start_runs_full_sync(store, gateway, engine):
    gateway.remote_rows['animals'] = [{'id': 'cow-1', 'tag': 'A-001', 'updated_at': '2024-01-15T10:00:00Z'}]
    store.add('animals', {'tag': 'A-002'}, TENANT)
    monitor = ConnectivityMonitor(engine, run_in_background=False)

    report = monitor.start()

    assert report.pulled == 1
    assert report.applied == 1


def test_start_does_nothing_while_offline(store, gateway, engine):
    store.update_sync_status(TENANT, is_online=False)
    monitor = ConnectivityMonitor(engine, run_in_background=False)

    assert monitor.start() is None
    assert gateway.fetch_calls == []


def test_reconnect_triggers_sync(store, gateway, engine):
    """offline -> online drains the queue; online -> online does not re-trigger"""
    monitor = ConnectivityMonitor(engine, run_in_background=False)
    monitor.set_online(False)
    record_id = store.add('animals', {'tag': 'A-001'}, TENANT)

    assert monitor.trigger('manual') is None
    assert store.get_sync_status(TENANT).is_online is False

    report = monitor.set_online(True)

    assert report.applied == 1
    assert [m.record_id for m in gateway.applied] == [record_id]
    assert store.get_sync_status(TENANT).is_online is True
    assert monitor.set_online(True) is None


def test_background_trigger_runs_on_a_thread(store, gateway, engine):
    store.add('animals', {'tag': 'A-001'}, TENANT)
    monitor = ConnectivityMonitor(engine)

    thread = monitor.trigger('manual')
    thread.join(5)

    assert isinstance(thread, threading.Thread)
    assert thread.daemon is True
    assert len(gateway.applied) == 1


def test_background_errors_are_logged_not_raised(engine, monkeypatch, caplog):
    def broken():
        raise RuntimeError("disk full")

    monkeypatch.setattr(engine, 'sync', broken)
    monitor = ConnectivityMonitor(engine)

    monitor.trigger('manual').join(5)

    assert 'disk full' in caplog.text


def test_foreground_errors_propagate(engine, monkeypatch):
    def broken():
        raise RuntimeError("disk full")

    monkeypatch.setattr(engine, 'sync', broken)
    monitor = ConnectivityMonitor(engine, run_in_background=False)

    with pytest.raises(RuntimeError):
        monitor.trigger('manual')


def test_auto_sync_interval(store, gateway, engine):
    synced = threading.Event()
    original_sync = engine.sync

    def sync_and_signal():
        report = original_sync()
        synced.set()
        return report

    engine.sync = sync_and_signal
    store.add('animals', {'tag': 'A-001'}, TENANT)
    monitor = ConnectivityMonitor(engine)

    timer = monitor.start_auto_sync(0.01)
    assert monitor.start_auto_sync(0.01) is timer
    assert synced.wait(5)
    monitor.stop()

    assert not timer.is_alive()
    assert len(gateway.applied) == 1


def test_stop_waits_for_in_flight_sync(store, gateway, engine):
    """stop() returns only after a triggered sync finished and released the flag"""
    store.add('animals', {'tag': 'A-001'}, TENANT)
    gateway.gate = threading.Event()
    monitor = ConnectivityMonitor(engine)

    thread = monitor.trigger('manual')
    assert gateway.entered.wait(5)

    release = threading.Timer(0.05, gateway.gate.set)
    release.start()
    monitor.stop()
    release.join(5)

    assert not thread.is_alive()
    assert len(gateway.applied) == 1
    assert store.get_sync_status(TENANT).sync_in_progress is False
