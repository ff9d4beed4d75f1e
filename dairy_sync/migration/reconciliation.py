# dairy_sync/migration/reconciliation.py
import logging
from typing import Iterable, List, Optional

from dairy_sync.models.reconciliation import Discrepancy, ReconciliationReport, ReconciliationStatus
from dairy_sync.models.telemetry import TelemetryRecord
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

MIGRATED_TABLES = ('animals', 'milk_logs', 'health_records', 'breeding_records', 'expenses', 'sales')

WARNING_THRESHOLD = 10


def classify_discrepancies(count: int) -> ReconciliationStatus:
    """0 -> PASSED, 1-10 -> WARNING, more than 10 -> FAILED."""
    if count == 0:
        return ReconciliationStatus.PASSED
    if count > WARNING_THRESHOLD:
        return ReconciliationStatus.FAILED
    return ReconciliationStatus.WARNING


class ReconciliationJob:
    """
    Compares Firebase and Supabase row counts per tenant and table, and can
    copy rows to the side that is missing them.
    """

    def __init__(self, firebase, supabase, tables: Iterable[str] = MIGRATED_TABLES, telemetry=None):
        self.firebase = firebase
        self.supabase = supabase
        self.tables = tuple(tables)
        self.telemetry = telemetry
        self.last_report: Optional[ReconciliationReport] = None

    def run(self, tenant_ids: Optional[List[str]] = None) -> ReconciliationReport:
        """Count every (tenant, table) cell in both databases. One failing cell does not stop the sweep."""
        started_at = DateTimeUtils.to_iso_string(DateTimeUtils.now())
        logger.info("Starting data reconciliation between Firebase and Supabase")

        discrepancies, failures = [], []
        tenants_listed = True
        if tenant_ids is None:
            try:
                tenant_ids = self.supabase.list_tenant_ids()
            except Exception as e:
                logger.error(f"Error listing tenants for reconciliation: {e}", exc_info=True)
                failures.append({'tenant_id': '*', 'table': '*', 'error': str(e)})
                tenant_ids, tenants_listed = [], False
        checked, total_records = 0, 0

        for table in self.tables:
            for tenant_id in tenant_ids:
                try:
                    firebase_count = self.firebase.count(table, tenant_id)
                    supabase_count = self.supabase.count(table, tenant_id)
                except Exception as e:
                    logger.error(f"Error reconciling {table} for tenant {tenant_id}: {e}")
                    failures.append({'tenant_id': tenant_id, 'table': table, 'error': str(e)})
                    continue

                checked += 1
                total_records += max(firebase_count, supabase_count)
                if firebase_count != supabase_count:
                    discrepancies.append(Discrepancy(tenant_id, table, firebase_count, supabase_count))

        report = ReconciliationReport(
            status=(classify_discrepancies(len(discrepancies)) if tenants_listed
                    else ReconciliationStatus.FAILED),
            discrepancies=discrepancies,
            failures=failures,
            tables_checked=checked,
            total_records=total_records,
            started_at=started_at,
            finished_at=DateTimeUtils.to_iso_string(DateTimeUtils.now()),
        )
        self.last_report = report

        logger.info(f"Data reconciliation completed: {report.status.value} "
                    f"({len(discrepancies)} discrepancies, {len(failures)} failed checks)")
        self._emit(TelemetryRecord(
            event='reconciliation',
            success=report.status is ReconciliationStatus.PASSED and not failures,
            timestamp=DateTimeUtils.now_ms(),
            details={
                'status': report.status.value,
                'discrepancies': len(discrepancies),
                'failures': len(failures),
                'total_difference': report.total_difference,
                'total_records': total_records,
            },
        ))
        return report

    def sync_discrepancies(self, discrepancies: Iterable[Discrepancy], by_row_id: bool = False) -> int:
        """
        Copy rows to the lagging side and return the number of rows written.

        Default: every row of the higher-count side is upserted into the
        lower-count side ("more rows" is assumed more authoritative).
        by_row_id: ids present on only one side are copied in both directions.
        """
        discrepancies = list(discrepancies)
        logger.info(f"Starting automatic sync for {len(discrepancies)} discrepancies")

        written = 0
        for d in discrepancies:
            try:
                if by_row_id:
                    written += self._sync_missing_ids(d.table, d.tenant_id)
                elif d.firebase_count > d.supabase_count:
                    written += self._copy_all(self.firebase, self.supabase, d.table, d.tenant_id)
                elif d.supabase_count > d.firebase_count:
                    written += self._copy_all(self.supabase, self.firebase, d.table, d.tenant_id)
            except Exception as e:
                logger.error(f"Failed to sync {d.table} for tenant {d.tenant_id}: {e}", exc_info=True)
        return written

    def _copy_all(self, source, target, table: str, tenant_id: str) -> int:
        rows = source.select(table, tenant_id)
        if not rows:
            return 0
        logger.info(f"Syncing {len(rows)} {table} rows from {source.name} to {target.name} (tenant: {tenant_id})")
        return target.upsert_many(table, rows, tenant_id)

    def _sync_missing_ids(self, table: str, tenant_id: str) -> int:
        firebase_ids = self.firebase.list_ids(table, tenant_id)
        supabase_ids = self.supabase.list_ids(table, tenant_id)

        written = 0
        for source, target, missing in (
            (self.firebase, self.supabase, firebase_ids - supabase_ids),
            (self.supabase, self.firebase, supabase_ids - firebase_ids),
        ):
            if not missing:
                continue
            rows = [r for r in source.select(table, tenant_id) if r.get('id') in missing]
            if rows:
                logger.info(f"Copying {len(rows)} missing {table} rows from {source.name} to {target.name} "
                            f"(tenant: {tenant_id})")
                written += target.upsert_many(table, rows, tenant_id)
        return written

    def _emit(self, record: TelemetryRecord) -> None:
        if self.telemetry is not None:
            self.telemetry.emit(record)
