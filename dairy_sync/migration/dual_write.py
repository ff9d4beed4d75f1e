# dairy_sync/migration/dual_write.py
"""
Routes every remote write to Firebase, Supabase or both, depending on the
active migration flags.

In dual-write mode a write counts only when both databases accept it; if
one side fails, the side that succeeded is rolled back (best effort) and the
caller gets an aggregate failure. The whole operation is retried with
exponential backoff before giving up.
"""
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from dairy_sync.migration.feature_flags import FeatureFlags
from dairy_sync.models.dual_write import DualWriteResult, WriteMode, WriteTarget
from dairy_sync.models.telemetry import TelemetryRecord
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

CONSISTENCY_ERROR = 'Dual-write consistency check failed: both writes must succeed'

_LABELS = {WriteTarget.FIREBASE.value: 'Firebase', WriteTarget.SUPABASE.value: 'Supabase'}


class DualWriteCoordinator:

    def __init__(self, firebase, supabase, flag_manager, telemetry=None,
                 max_attempts: int = 3, base_delay: float = 1.0, max_delay: float = 10.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.databases = {
            WriteTarget.FIREBASE.value: firebase,
            WriteTarget.SUPABASE.value: supabase,
        }
        self.flag_manager = flag_manager
        self.telemetry = telemetry
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    @staticmethod
    def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 10.0) -> float:
        """Delay before retrying after `attempt` (1-based) failed: base * 2^(attempt-1), capped."""
        return min(base_delay * (2 ** (attempt - 1)), max_delay)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def create_record(self, table: str, data: Dict[str, Any], tenant_id: str,
                      user_id: Optional[str] = None) -> DualWriteResult:
        """Insert a row into every active target. Both sides share the same id."""
        data = dict(data)
        data.setdefault('id', str(uuid.uuid4()))
        flags = self.flag_manager.get_flags(user_id=user_id, tenant_id=tenant_id)
        return self._with_retry(
            'create', table, tenant_id, data['id'], flags,
            lambda targets: self._create_once(table, data, tenant_id, flags, targets)
        )

    def update_record(self, table: str, record_id: str, data: Dict[str, Any], tenant_id: str,
                      user_id: Optional[str] = None) -> DualWriteResult:
        changes = {k: v for k, v in data.items() if k not in ('id', 'tenant_id')}
        flags = self.flag_manager.get_flags(user_id=user_id, tenant_id=tenant_id)
        return self._with_retry(
            'update', table, tenant_id, record_id, flags,
            lambda targets: self._update_once(table, record_id, changes, tenant_id, flags, targets)
        )

    def delete_record(self, table: str, record_id: str, tenant_id: str,
                      user_id: Optional[str] = None) -> DualWriteResult:
        flags = self.flag_manager.get_flags(user_id=user_id, tenant_id=tenant_id)
        return self._with_retry(
            'delete', table, tenant_id, record_id, flags,
            lambda targets: self._delete_once(table, record_id, tenant_id, flags, targets)
        )

    def _with_retry(self, operation: str, table: str, tenant_id: str, record_id: str, flags: FeatureFlags,
                    attempt_once: Callable[[List[str]], DualWriteResult]) -> DualWriteResult:
        """
        A target that still holds the write after a failed attempt (its
        rollback failed) is not written again; later attempts only cover the
        remaining targets.
        """
        started = time.monotonic()
        result = None
        targets = list(flags.write_targets)
        kept: List[str] = []

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = attempt_once(targets)
            except Exception as e:
                logger.error(f"Dual write {operation} {table}/{record_id} raised: {e}", exc_info=True)
                result = DualWriteResult(success=False, write_targets=[], errors=[f"Dual write failed: {e}"])
            result.attempts = attempt

            kept.extend(t for t in result.write_targets if t not in result.rolled_back and t not in kept)
            if result.success:
                result.write_targets = [t for t in flags.write_targets if t in kept]
                self._log_operation(operation, table, tenant_id, record_id, result, started)
                return result
            targets = [t for t in targets if t not in kept]

            if attempt < self.max_attempts:
                delay = self.backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.info(f"Retry attempt {attempt} for {operation} {table}/{record_id} in {delay}s")
                self.sleep(delay)

        self._log_operation(operation, table, tenant_id, record_id, result, started)
        return result

    def _write_each(self, targets: List[str], result: DualWriteResult, verb: str,
                    write: Callable[[str, Any], Any]) -> List[str]:
        """Run `write` against each target on its own; returns the targets that failed."""
        failed = []
        for target in targets:
            try:
                row = write(target, self.databases[target])
                setattr(result, f'{target}_result', row if row is not None else {'id': None})
                result.write_targets.append(target)
            except Exception as e:
                failed.append(target)
                result.errors.append(f"{_LABELS[target]} {verb} failed: {e}")
        return failed

    def _settle(self, flags: FeatureFlags, failed: List[str], result: DualWriteResult,
                rollback: Callable[[], None]):
        if not failed:
            return
        if flags.write_mode is WriteMode.DUAL_WRITE:
            result.success = False
            result.errors.append(CONSISTENCY_ERROR)
            if result.write_targets:
                rollback()
        elif any(target in flags.required_targets for target in failed):
            result.success = False

    def _create_once(self, table, data, tenant_id, flags, targets) -> DualWriteResult:
        result = DualWriteResult(success=True, write_targets=[])
        failed = self._write_each(targets, result, 'write', lambda target, db: db.insert(table, data, tenant_id))

        def rollback():
            for target in list(result.write_targets):
                self._compensate(target, 'create', table, data['id'], tenant_id, result,
                                 lambda db: db.delete(table, data['id'], tenant_id))

        self._settle(flags, failed, result, rollback)
        return result

    def _update_once(self, table, record_id, changes, tenant_id, flags, targets) -> DualWriteResult:
        result = DualWriteResult(success=True, write_targets=[])
        priors: Dict[str, Optional[Dict[str, Any]]] = {}

        def write(target, db):
            priors[target] = db.get(table, record_id, tenant_id)
            return db.update(table, record_id, changes, tenant_id)

        failed = self._write_each(targets, result, 'write', write)

        def rollback():
            for target in list(result.write_targets):
                self._compensate(target, 'update', table, record_id, tenant_id, result,
                                 lambda db, t=target: self._restore(db, table, record_id, tenant_id, priors.get(t)))

        self._settle(flags, failed, result, rollback)
        return result

    def _delete_once(self, table, record_id, tenant_id, flags, targets) -> DualWriteResult:
        result = DualWriteResult(success=True, write_targets=[])
        priors: Dict[str, Optional[Dict[str, Any]]] = {}

        def write(target, db):
            priors[target] = db.get(table, record_id, tenant_id)
            db.delete(table, record_id, tenant_id)
            return {'id': record_id}

        failed = self._write_each(targets, result, 'delete', write)

        def rollback():
            for target in list(result.write_targets):
                self._compensate(target, 'delete', table, record_id, tenant_id, result,
                                 lambda db, t=target: self._restore(db, table, record_id, tenant_id, priors.get(t)))

        self._settle(flags, failed, result, rollback)
        return result

    @staticmethod
    def _restore(db, table, record_id, tenant_id, prior):
        """Put back the row captured before the write, or remove it if there was none."""
        if prior is None:
            db.delete(table, record_id, tenant_id)
        else:
            db.upsert_many(table, [prior], tenant_id)

    def _compensate(self, target, operation, table, record_id, tenant_id, result, undo) -> None:
        """Best-effort rollback of one target. Never raises; failures are left to reconciliation."""
        label = _LABELS[target]
        try:
            undo(self.databases[target])
            result.rolled_back.append(target)
            logger.info(f"Rolled back {label} {operation} of {table}/{record_id}")
            success, error = True, None
        except Exception as e:
            logger.error(f"Failed to rollback {label} {operation} of {table}/{record_id}: {e}", exc_info=True)
            success, error = False, str(e)

        self._emit(TelemetryRecord(
            event='rollback',
            success=success,
            timestamp=DateTimeUtils.now_ms(),
            tenant_id=tenant_id,
            table=table,
            operation=operation,
            error=error,
            details={'target': target, 'record_id': record_id},
        ))

    def _log_operation(self, operation, table, tenant_id, record_id, result: DualWriteResult, started: float):
        duration_ms = int((time.monotonic() - started) * 1000)
        if result.success:
            logger.info(f"Dual write {operation} {table}/{record_id} succeeded "
                        f"(attempts: {result.attempts}, {duration_ms}ms, targets: {result.write_targets})")
        else:
            logger.error(f"Dual write {operation} {table}/{record_id} failed after {result.attempts} attempts "
                         f"({duration_ms}ms): {result.errors}")

        self._emit(TelemetryRecord(
            event='dual_write',
            success=result.success,
            timestamp=DateTimeUtils.now_ms(),
            tenant_id=tenant_id,
            table=table,
            operation=operation,
            duration_ms=duration_ms,
            attempts=result.attempts,
            error='; '.join(result.errors) or None,
            details={
                'record_id': record_id,
                'write_targets': list(result.write_targets),
                'rolled_back': list(result.rolled_back),
            },
        ))

    def _emit(self, record: TelemetryRecord) -> None:
        if self.telemetry is not None:
            self.telemetry.emit(record)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def _read_source(self, tenant_id: str, user_id: Optional[str] = None):
        flags = self.flag_manager.get_flags(user_id=user_id, tenant_id=tenant_id)
        return self.databases[flags.read_source]

    def select(self, table: str, tenant_id: str, since_date: Optional[str] = None,
               updated_after=None, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Rows from the single database chosen by `read_from_supabase`."""
        if isinstance(updated_after, (int, float)):
            updated_after = DateTimeUtils.ms_to_iso(int(updated_after))
        db = self._read_source(tenant_id, user_id)
        return db.select(table, tenant_id, since_date=since_date, updated_after=updated_after)

    def get(self, table: str, record_id: str, tenant_id: str,
            user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self._read_source(tenant_id, user_id).get(table, record_id, tenant_id)

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------
    def migration_status(self, table: str = 'milk_logs') -> Dict[str, Any]:
        flags = self.flag_manager.get_flags()
        status = {
            'phase': self.flag_manager.current_phase(flags),
            'flags': flags.to_dict(),
            'write_mode': flags.write_mode.value,
            'write_targets': flags.write_targets,
            'read_source': flags.read_source,
        }
        try:
            supabase_count = self.databases[WriteTarget.SUPABASE.value].count(table)
            firebase_count = self.databases[WriteTarget.FIREBASE.value].count(table)
            status['data_integrity'] = {
                'table': table,
                'supabase_count': supabase_count,
                'firebase_count': firebase_count,
                'discrepancy': abs(supabase_count - firebase_count),
            }
        except Exception as e:
            logger.error(f"Migration status count check failed: {e}")
            status['data_integrity'] = {'table': table, 'error': str(e)}
        return status
