# dairy_sync/migration/test_monitor.py
"""
MigrationMonitor tests: metrics, alerts, automated recovery and health.
"""

import pytest

from dairy_sync.migration.feature_flags import FeatureFlagManager, StaticFlagStore
from dairy_sync.migration.monitor import AlertThresholds, MigrationMonitor, data_integrity_score
from dairy_sync.migration.reconciliation import ReconciliationJob
from dairy_sync.models.reconciliation import ReconciliationReport, ReconciliationStatus, Discrepancy
from dairy_sync.models.telemetry import TelemetryRecord
from dairy_sync.services.telemetry import TelemetrySink
from dairy_sync.utils.datetime_utils import DateTimeUtils


@pytest.fixture
def telemetry():
    return TelemetrySink()


@pytest.fixture
def monitor(firebase, supabase, telemetry):
    flags = FeatureFlagManager(StaticFlagStore('PHASE_1_DUAL_WRITE'))
    job = ReconciliationJob(firebase, supabase, tables=['animals'], telemetry=telemetry)
    return MigrationMonitor(flags, job, telemetry, supabase=supabase)


def _dual_write(success):
    return TelemetryRecord(event='dual_write', success=success, timestamp=DateTimeUtils.now_ms(), duration_ms=10)


def test_data_integrity_score():
    assert data_integrity_score(None) == 100.0
    report = ReconciliationReport(
        status=ReconciliationStatus.WARNING,
        discrepancies=[Discrepancy('t1', 'animals', 4, 3)],
        total_records=100,
    )
    assert data_integrity_score(report) == pytest.approx(99.0)


def test_collect_metrics_healthy(monitor, firebase, supabase, telemetry):
    firebase.seed('animals', 't1', [{'id': 'a'}])
    supabase.seed('animals', 't1', [{'id': 'a'}])
    telemetry.emit(_dual_write(True))

    metrics = monitor.collect_metrics()

    assert metrics.phase == 'PHASE_1_DUAL_WRITE'
    assert metrics.dual_write_success == 1
    assert metrics.dual_write_failures == 0
    assert metrics.error_rate == 0.0
    assert metrics.data_integrity_score == 100.0
    assert metrics.reconciliation_status == 'PASSED'
    assert metrics.throughput == 1
    assert monitor.active_alerts() == []
    assert list(monitor.history) == [metrics]


def test_integrity_and_error_rate_alerts(monitor, firebase, supabase, telemetry):
    firebase.seed('animals', 't1', [{'id': 'a'}, {'id': 'b'}])
    supabase.seed('animals', 't1', [{'id': 'a'}])
    telemetry.emit(_dual_write(True))
    telemetry.emit(_dual_write(False))

    metrics = monitor.collect_metrics()

    assert metrics.error_rate == 50.0
    assert metrics.data_integrity_score == 50.0
    alerts = {a.alert_type: a.severity for a in monitor.active_alerts()}
    assert alerts == {'ERROR_RATE_HIGH': 'HIGH', 'DATA_INTEGRITY_LOW': 'CRITICAL', 'FAILURE_RATE_HIGH': 'HIGH'}

    assert monitor.resolve_alerts('ERROR_RATE_HIGH') == 1
    assert len(monitor.active_alerts()) == 2
    assert monitor.resolve_alerts() == 2


def test_slow_collection_raises_response_time_alert(firebase, supabase, telemetry):
    ticks = iter([0.0, 6.0])
    monitor = MigrationMonitor(
        FeatureFlagManager(StaticFlagStore('PHASE_1_DUAL_WRITE')),
        ReconciliationJob(firebase, supabase, tables=['animals']),
        telemetry,
        clock=lambda: next(ticks),
    )

    monitor.collect_metrics()

    alert = monitor.active_alerts()[0]
    assert alert.alert_type == 'RESPONSE_TIME_HIGH'
    assert alert.details == {'duration': 6000, 'threshold': 5000}


def test_custom_thresholds(monitor, telemetry):
    monitor.thresholds = AlertThresholds(error_rate=60.0, failure_rate=60.0)
    telemetry.emit(_dual_write(True))
    telemetry.emit(_dual_write(False))

    monitor.collect_metrics(run_reconciliation=False)

    assert monitor.active_alerts() == []


def test_automated_recovery_for_integrity(monitor, firebase, supabase):
    firebase.seed('animals', 't1', [{'id': 'a'}, {'id': 'b'}])
    supabase.seed('animals', 't1', [{'id': 'a'}])

    assert monitor.attempt_automated_recovery('DATA_INTEGRITY_LOW') is True
    assert supabase.list_ids('animals', 't1') == {'a', 'b'}

    # nothing left to fix
    assert monitor.attempt_automated_recovery('DATA_INTEGRITY_LOW') is False


def test_no_automated_recovery_for_other_alerts(monitor):
    assert monitor.attempt_automated_recovery('ERROR_RATE_HIGH') is False
    assert monitor.attempt_automated_recovery('RESPONSE_TIME_HIGH') is False


def test_migration_progress(monitor):
    assert monitor.migration_progress() == {'phase': 'PHASE_1_DUAL_WRITE', 'completion': 25}


def test_health_check(monitor, supabase, telemetry):
    assert monitor.health_check()['status'] == 'HEALTHY'

    supabase.failing.add('count')
    result = monitor.health_check()
    assert result['status'] == 'WARNING'
    assert result['checks']['database'] is False


def test_health_check_critical(monitor, supabase, telemetry, monkeypatch):
    supabase.failing.add('count')
    for _ in range(10):
        telemetry.emit(_dual_write(False))
    monitor.reconciliation.last_report = ReconciliationReport(status=ReconciliationStatus.FAILED)

    def broken():
        raise RuntimeError("flags unavailable")

    monkeypatch.setattr(monitor.flag_manager, 'list_flags', broken)

    assert monitor.health_check()['status'] == 'CRITICAL'
