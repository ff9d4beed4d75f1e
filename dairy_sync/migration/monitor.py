# dairy_sync/migration/monitor.py
import logging
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

from dairy_sync.models.reconciliation import ReconciliationReport, ReconciliationStatus
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
MINUTE_MS = 60 * 1000

ALERT_SEVERITY = {
    'ERROR_RATE_HIGH': 'HIGH',
    'DATA_INTEGRITY_LOW': 'CRITICAL',
    'FAILURE_RATE_HIGH': 'HIGH',
    'RESPONSE_TIME_HIGH': 'MEDIUM',
}

PHASE_PROGRESS = {
    'UNKNOWN': 0,
    'PHASE_1_DUAL_WRITE': 25,
    'PHASE_2_READ_MIGRATION': 50,
    'PHASE_3_WRITE_MIGRATION': 75,
    'PHASE_4_CLEANUP': 100,
}


@dataclass
class AlertThresholds:
    error_rate: float = 1.0          # percent
    data_integrity: float = 99.9     # percent
    failure_rate: float = 0.5        # percent
    response_time_ms: int = 5000


@dataclass
class MigrationMetrics:
    timestamp: str
    phase: str
    dual_write_success: int
    dual_write_failures: int
    reconciliation_status: Optional[str]
    data_integrity_score: float
    error_rate: float
    throughput: int  # dual-write operations in the last minute

    @property
    def failure_rate(self) -> float:
        total = self.dual_write_success + self.dual_write_failures
        return (self.dual_write_failures / total) * 100 if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Alert:
    alert_type: str
    severity: str
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: DateTimeUtils.to_iso_string(DateTimeUtils.now()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def data_integrity_score(report: Optional[ReconciliationReport]) -> float:
    """Share of rows (over every checked tenant/table) that both databases agree on."""
    if report is None or report.total_records == 0:
        return 100.0
    return max(0.0, (report.total_records - report.total_difference) / report.total_records * 100)


class MigrationMonitor:
    """Metrics, alerts, automated recovery and health for the running migration."""

    def __init__(self, flag_manager, reconciliation, telemetry, supabase=None,
                 thresholds: Optional[AlertThresholds] = None,
                 clock: Callable[[], float] = time.monotonic, history_size: int = 24):
        self.flag_manager = flag_manager
        self.reconciliation = reconciliation
        self.telemetry = telemetry
        self.supabase = supabase
        self.thresholds = thresholds or AlertThresholds()
        self.clock = clock
        self.history = deque(maxlen=history_size)
        self.alerts: List[Alert] = []

    def collect_metrics(self, run_reconciliation: bool = True) -> MigrationMetrics:
        started = self.clock()
        try:
            now_ms = DateTimeUtils.now_ms()
            hourly = self.telemetry.stats('dual_write', since_ms=now_ms - HOUR_MS)
            throughput = self.telemetry.stats('dual_write', since_ms=now_ms - MINUTE_MS)['total']

            report = self.reconciliation.run() if run_reconciliation else self.reconciliation.last_report

            metrics = MigrationMetrics(
                timestamp=DateTimeUtils.to_iso_string(DateTimeUtils.now()),
                phase=self.flag_manager.current_phase(),
                dual_write_success=hourly['successes'],
                dual_write_failures=hourly['failures'],
                reconciliation_status=report.status.value if report else None,
                data_integrity_score=data_integrity_score(report),
                error_rate=(hourly['failures'] / hourly['total'] * 100) if hourly['total'] else 0.0,
                throughput=throughput,
            )
            self.history.append(metrics)
            self.check_alerts(metrics)
            return metrics
        finally:
            duration_ms = int((self.clock() - started) * 1000)
            if duration_ms > self.thresholds.response_time_ms:
                self.trigger_alert('RESPONSE_TIME_HIGH', {
                    'duration': duration_ms,
                    'threshold': self.thresholds.response_time_ms,
                })

    def check_alerts(self, metrics: MigrationMetrics) -> List[Alert]:
        raised = []
        if metrics.error_rate > self.thresholds.error_rate:
            raised.append(self.trigger_alert('ERROR_RATE_HIGH', {
                'current': metrics.error_rate, 'threshold': self.thresholds.error_rate,
            }))
        if metrics.data_integrity_score < self.thresholds.data_integrity:
            raised.append(self.trigger_alert('DATA_INTEGRITY_LOW', {
                'current': metrics.data_integrity_score, 'threshold': self.thresholds.data_integrity,
            }))
        if metrics.failure_rate > self.thresholds.failure_rate:
            raised.append(self.trigger_alert('FAILURE_RATE_HIGH', {
                'current': metrics.failure_rate, 'threshold': self.thresholds.failure_rate,
            }))
        return raised

    def trigger_alert(self, alert_type: str, details: Dict[str, Any]) -> Alert:
        alert = Alert(alert_type, ALERT_SEVERITY.get(alert_type, 'MEDIUM'), details)
        self.alerts.append(alert)
        logger.warning(f"MIGRATION ALERT: {alert_type} ({alert.severity}) {details}")
        return alert

    def active_alerts(self) -> List[Alert]:
        return list(self.alerts)

    def resolve_alerts(self, alert_type: Optional[str] = None) -> int:
        before = len(self.alerts)
        self.alerts = [a for a in self.alerts if alert_type and a.alert_type != alert_type]
        return before - len(self.alerts)

    def migration_progress(self) -> Dict[str, Any]:
        phase = self.flag_manager.current_phase()
        return {'phase': phase, 'completion': PHASE_PROGRESS.get(phase, 0)}

    def attempt_automated_recovery(self, alert_type: str) -> bool:
        """Only DATA_INTEGRITY_LOW has an automated fix: reconcile, then copy rows across."""
        logger.info(f"Attempting automated recovery for: {alert_type}")
        if alert_type != 'DATA_INTEGRITY_LOW':
            logger.warning(f"No automated recovery available for {alert_type}")
            return False

        try:
            report = self.reconciliation.run()
            if not report.discrepancies:
                return False
            self.reconciliation.sync_discrepancies(report.discrepancies)
            logger.info("Automated data reconciliation completed")
            return True
        except Exception as e:
            logger.error(f"Automated data reconciliation failed: {e}", exc_info=True)
            return False

    def health_check(self) -> Dict[str, Any]:
        checks = {
            'database': self._check(lambda: self.supabase.count('tenants') if self.supabase else True),
            'feature_flags': self._check(self.flag_manager.list_flags),
            'dual_write': self._dual_write_healthy(),
            'reconciliation': self._reconciliation_healthy(),
        }
        if all(checks.values()):
            status = 'HEALTHY'
        elif any(checks.values()):
            status = 'WARNING'
        else:
            status = 'CRITICAL'
        return {
            'status': status,
            'checks': checks,
            'last_updated': DateTimeUtils.to_iso_string(DateTimeUtils.now()),
        }

    @staticmethod
    def _check(check_fn: Callable[[], Any]) -> bool:
        try:
            check_fn()
            return True
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False

    def _dual_write_healthy(self) -> bool:
        recent = self.telemetry.recent('dual_write')[-10:]
        return not recent or any(r.success for r in recent)

    def _reconciliation_healthy(self) -> bool:
        report = self.reconciliation.last_report
        return report is None or report.status is not ReconciliationStatus.FAILED
