# dairy_sync/models/dual_write.py
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class WriteTarget(str, Enum):
    FIREBASE = 'firebase'
    SUPABASE = 'supabase'


class WriteMode(str, Enum):
    FIREBASE_ONLY = 'firebase-only'
    SUPABASE_ONLY = 'supabase-only'
    DUAL_WRITE = 'dual-write'


@dataclass
class DualWriteResult:
    """Aggregate outcome of one coordinated write. Never persisted."""
    success: bool
    write_targets: List[str]
    supabase_result: Optional[Dict[str, Any]] = None
    firebase_result: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    rolled_back: List[str] = field(default_factory=list)
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
