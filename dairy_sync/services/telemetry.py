# dairy_sync/services/telemetry.py
import logging
import threading
from collections import deque
from typing import Any, Dict, List, Optional

from dairy_sync.models.telemetry import TelemetryRecord
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger('dairy_sync.telemetry')


class TelemetrySink:
    """
    Receives structured events from the sync engine, the dual-write
    coordinator and the reconciliation job. Every record is logged, kept in
    a bounded in-memory buffer for the migration monitor and, when a
    Supabase client is given, inserted into `migration_logs`.
    """

    def __init__(self, client=None, table: str = 'migration_logs', buffer_size: int = 1000):
        self.client = client
        self.table = table
        self._records = deque(maxlen=buffer_size)
        self._lock = threading.Lock()

    def emit(self, record: TelemetryRecord) -> None:
        level = logging.INFO if record.success else logging.WARNING
        logger.log(
            level,
            f"{record.event} success={record.success} tenant={record.tenant_id} "
            f"table={record.table} attempts={record.attempts} duration_ms={record.duration_ms}"
            + (f" error={record.error}" if record.error else ''),
            extra={'telemetry': record.to_dict()}
        )
        with self._lock:
            self._records.append(record)

        if self.client is not None:
            self._persist(record)

    def _persist(self, record: TelemetryRecord) -> None:
        row = {
            'operation_type': f"{record.event}:{record.operation}" if record.operation else record.event,
            'tenant_id': record.tenant_id,
            'success': record.success,
            'failure': not record.success,
            'error_message': record.error,
            'duration_ms': record.duration_ms,
            'metadata': {'table': record.table, 'attempts': record.attempts, **record.details},
            'created_at': DateTimeUtils.ms_to_iso(record.timestamp),
        }
        try:
            self.client.table(self.table).insert(row).execute()
        except Exception as e:
            # Telemetry must never break the write path it is observing.
            logger.error(f"Failed to persist telemetry to {self.table}: {e}")

    def recent(self, event: Optional[str] = None, since_ms: Optional[int] = None) -> List[TelemetryRecord]:
        with self._lock:
            records = list(self._records)
        if event:
            records = [r for r in records if r.event == event]
        if since_ms is not None:
            records = [r for r in records if r.timestamp >= since_ms]
        return records

    def stats(self, event: str, since_ms: Optional[int] = None) -> Dict[str, Any]:
        records = self.recent(event, since_ms)
        successes = sum(1 for r in records if r.success)
        durations = [r.duration_ms for r in records if r.duration_ms is not None]
        return {
            'total': len(records),
            'successes': successes,
            'failures': len(records) - successes,
            'avg_duration_ms': (sum(durations) / len(durations)) if durations else 0,
        }
