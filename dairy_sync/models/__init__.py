# dairy_sync/models/__init__.py
from .sync import (
    SyncTable, MutationOperation, SyncState, TIME_SERIES_TABLES,
    QueuedMutation, CachedEntity, SyncStatus, SyncReport
)
from .dual_write import WriteTarget, WriteMode, DualWriteResult
from .reconciliation import ReconciliationStatus, Discrepancy, ReconciliationReport
from .telemetry import TelemetryRecord

__all__ = [
    'SyncTable', 'MutationOperation', 'SyncState', 'TIME_SERIES_TABLES',
    'QueuedMutation', 'CachedEntity', 'SyncStatus', 'SyncReport',
    'WriteTarget', 'WriteMode', 'DualWriteResult',
    'ReconciliationStatus', 'Discrepancy', 'ReconciliationReport',
    'TelemetryRecord'
]
