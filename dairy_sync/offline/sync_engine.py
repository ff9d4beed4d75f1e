# dairy_sync/offline/sync_engine.py
import logging
import time

from dairy_sync.core.errors import LocalStoreError, RemoteDatabaseError
from dairy_sync.models.sync import (
    MutationOperation, QueuedMutation, SyncReport, SyncState, SyncTable, TIME_SERIES_TABLES
)
from dairy_sync.models.telemetry import TelemetryRecord
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

DEFAULT_PULL_WINDOW_DAYS = 30
DEFAULT_STALE_AFTER_MS = 10 * 60 * 1000


class SyncEngine:
    """
    Replays one tenant's queued mutations against the remote gateway and
    pulls remote changes back into the local store.

    At most one sync runs per tenant: a per-tenant lock covers threads in this
    process, the persisted `sync_in_progress` flag covers other processes.
    """

    def __init__(self, tenant_id: str, store, gateway, telemetry=None,
                 pull_window_days: int = DEFAULT_PULL_WINDOW_DAYS,
                 stale_after_ms: int = DEFAULT_STALE_AFTER_MS):
        self.tenant_id = tenant_id
        self.store = store
        self.gateway = gateway
        self.telemetry = telemetry
        self.pull_window_days = pull_window_days
        self.stale_after_ms = stale_after_ms
        self.state = SyncState.IDLE

        self.store.ensure_tenant(tenant_id)

    @property
    def is_syncing(self) -> bool:
        return self.state is not SyncState.IDLE

    # ------------------------------------------------------------------
    # push
    # ------------------------------------------------------------------
    def sync(self) -> SyncReport:
        """Drain the tenant's queue once. A no-op while another sync is running."""
        report = SyncReport(tenant_id=self.tenant_id)

        status = self.store.get_sync_status(self.tenant_id)
        if status is not None and not status.is_online:
            report.skipped, report.reason = True, 'offline'
            return report

        lock = self.store.tenant_lock(self.tenant_id)
        if not lock.acquire(blocking=False):
            logger.info(f"Sync already running for tenant {self.tenant_id}, skipping")
            report.skipped, report.reason = True, 'in_progress'
            return report

        try:
            if not self.store.try_begin_sync(self.tenant_id, self.stale_after_ms):
                logger.info(f"Sync flag held by another process for tenant {self.tenant_id}, skipping")
                report.skipped, report.reason = True, 'in_progress'
                return report

            started = time.monotonic()
            completed = False
            try:
                self._drain(report)
                completed = True
            finally:
                self.state = SyncState.IDLE
                self.store.finish_sync(self.tenant_id, succeeded=completed)
                self._emit_cycle(report, started, completed)

            logger.info(
                f"Sync finished for tenant {self.tenant_id}: applied={report.applied} "
                f"failed={report.failed} dropped={report.dropped} deferred={report.deferred}"
            )
            return report
        finally:
            lock.release()

    def _drain(self, report: SyncReport) -> None:
        self.state = SyncState.DRAINING
        # (table, record_id) pairs whose earlier mutation failed in this cycle
        blocked = set()

        for mutation in self.store.queue.dequeue_all(self.tenant_id):
            entity = (mutation.table, mutation.record_id)
            if entity in blocked:
                report.deferred += 1
                continue

            self.state = SyncState.APPLYING
            try:
                self.gateway.apply(mutation)
            except LocalStoreError:
                raise
            except RemoteDatabaseError as e:
                blocked.add(entity)
                self._record_failure(mutation, e, report)
                continue
            except Exception as e:
                logger.error(f"Unexpected error applying mutation {mutation.id}: {e}", exc_info=True)
                blocked.add(entity)
                self._record_failure(mutation, e, report)
                continue
            finally:
                self.state = SyncState.DRAINING

            self._confirm(mutation)
            report.applied += 1

    def _confirm(self, mutation: QueuedMutation) -> None:
        """Remote write confirmed: drop the mutation and settle the cached record."""
        queue = self.store.queue
        with self.store.transaction() as conn:
            queue.remove(mutation.id, conn=conn)
            if mutation.operation == MutationOperation.DELETE.value:
                self.store.purge(mutation.table, mutation.record_id, self.tenant_id, conn=conn)
            elif not queue.has_pending(self.tenant_id, mutation.table, mutation.record_id, conn=conn):
                self.store.mark_synced(mutation.table, mutation.record_id, self.tenant_id, conn=conn)

    def _record_failure(self, mutation: QueuedMutation, error: Exception, report: SyncReport) -> None:
        retry_count = self.store.queue.increment_retry(mutation.id)
        report.errors.append(f"{mutation.operation} {mutation.table}/{mutation.record_id}: {error}")

        if self.store.queue.is_exhausted(retry_count):
            report.dropped += 1
            self._emit(TelemetryRecord(
                event='mutation_dropped',
                success=False,
                timestamp=DateTimeUtils.now_ms(),
                tenant_id=self.tenant_id,
                table=mutation.table,
                operation=mutation.operation,
                attempts=retry_count,
                error=str(error),
                details={'mutation_id': mutation.id, 'record_id': mutation.record_id},
            ))
        else:
            report.failed += 1
            logger.warning(
                f"Mutation {mutation.id} failed (attempt {retry_count}/{self.store.queue.max_retries}): {error}"
            )

    # ------------------------------------------------------------------
    # pull
    # ------------------------------------------------------------------
    def pull_latest_data(self) -> int:
        """
        Fetch remote changes since the last pull and merge them last-writer-wins.
        Animals are pulled in full, time-series tables only inside the pull window.
        Returns the number of local rows that changed.
        """
        status = self.store.get_sync_status(self.tenant_id)
        updated_after = status.last_pull if status else None
        since_date = DateTimeUtils.to_date_string(DateTimeUtils.days_ago(self.pull_window_days))
        pull_started = DateTimeUtils.now_ms()

        changed = 0
        complete = True
        for table in SyncTable.values():
            try:
                rows = self.gateway.fetch(
                    table,
                    self.tenant_id,
                    since_date=since_date if table in TIME_SERIES_TABLES else None,
                    updated_after=updated_after,
                )
            except RemoteDatabaseError as e:
                logger.warning(f"Pull of {table} failed for tenant {self.tenant_id}: {e}")
                complete = False
                continue

            for row in rows:
                if self.store.upsert_from_remote(table, self.tenant_id, row):
                    changed += 1

        # Only advance the watermark when every table was fetched.
        if complete:
            self.store.update_sync_status(self.tenant_id, last_pull=pull_started)

        logger.info(f"Pulled {changed} changed rows for tenant {self.tenant_id}")
        return changed

    def full_sync(self) -> SyncReport:
        pulled = self.pull_latest_data()
        report = self.sync()
        report.pulled = pulled
        return report

    # ------------------------------------------------------------------
    # telemetry
    # ------------------------------------------------------------------
    def _emit_cycle(self, report: SyncReport, started: float, completed: bool) -> None:
        self._emit(TelemetryRecord(
            event='sync_cycle',
            success=completed and report.failed == 0 and report.dropped == 0,
            timestamp=DateTimeUtils.now_ms(),
            tenant_id=self.tenant_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            details=report.to_dict(),
        ))

    def _emit(self, record: TelemetryRecord) -> None:
        if self.telemetry is not None:
            self.telemetry.emit(record)
