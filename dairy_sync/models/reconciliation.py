# dairy_sync/models/reconciliation.py
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class ReconciliationStatus(str, Enum):
    PASSED = 'PASSED'
    WARNING = 'WARNING'
    FAILED = 'FAILED'


@dataclass
class Discrepancy:
    tenant_id: str
    table: str
    firebase_count: int
    supabase_count: int

    @property
    def difference(self) -> int:
        return abs(self.firebase_count - self.supabase_count)

    @property
    def source(self) -> str:
        """Side with more rows; the count heuristic copies from here."""
        return 'firebase' if self.firebase_count > self.supabase_count else 'supabase'

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['difference'] = self.difference
        data['source'] = self.source
        return data


@dataclass
class ReconciliationReport:
    status: ReconciliationStatus
    discrepancies: List[Discrepancy] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)
    tables_checked: int = 0
    total_records: int = 0
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def total_difference(self) -> int:
        return sum(d.difference for d in self.discrepancies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'discrepancies': [d.to_dict() for d in self.discrepancies],
            'failures': list(self.failures),
            'tables_checked': self.tables_checked,
            'total_records': self.total_records,
            'total_difference': self.total_difference,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }
