# dairy_sync/models/telemetry.py
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional


@dataclass
class TelemetryRecord:
    """
    One structured event: a sync cycle, a dual-write attempt, a rollback or a
    reconciliation run. Mirrors a row of the `migration_logs` table.
    """
    event: str         # 'sync_cycle', 'dual_write', 'rollback', 'reconciliation', ...
    success: bool
    timestamp: int     # epoch ms
    tenant_id: Optional[str] = None
    table: Optional[str] = None
    operation: Optional[str] = None
    duration_ms: Optional[int] = None
    attempts: Optional[int] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
