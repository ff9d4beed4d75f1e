# dairy_sync/models/sync.py
import json
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class SyncTable(str, Enum):
    """Tables that can be edited offline and replayed through the queue."""
    ANIMALS = 'animals'
    MILK_LOGS = 'milk_logs'
    HEALTH_RECORDS = 'health_records'

    @classmethod
    def values(cls) -> List[str]:
        return [t.value for t in cls]


# Time-series tables are pulled and kept for a limited window only.
TIME_SERIES_TABLES = (SyncTable.MILK_LOGS.value, SyncTable.HEALTH_RECORDS.value)


class MutationOperation(str, Enum):
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'


class SyncState(str, Enum):
    IDLE = 'idle'
    DRAINING = 'draining'
    APPLYING = 'applying'


@dataclass
class QueuedMutation:
    """
    One local write waiting to be replayed against the remote system.
    `seq` is assigned by storage and defines FIFO order.
    """
    id: str
    tenant_id: str
    table: str
    operation: str
    record_id: str
    data: Dict[str, Any]
    timestamp: int  # epoch ms of the local write
    retry_count: int = 0
    seq: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> 'QueuedMutation':
        return cls(
            id=row['id'],
            tenant_id=row['tenant_id'],
            table=row['table_name'],
            operation=row['operation'],
            record_id=row['record_id'],
            data=json.loads(row['data']) if row['data'] else {},
            timestamp=row['timestamp'],
            retry_count=row['retry_count'],
            seq=row['seq'],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CachedEntity:
    """A record as held by the local store, with its sync metadata."""
    id: str
    tenant_id: str
    table: str
    data: Dict[str, Any]
    synced: bool
    last_modified: int
    deleted: bool = False

    @classmethod
    def from_row(cls, row) -> 'CachedEntity':
        return cls(
            id=row['id'],
            tenant_id=row['tenant_id'],
            table=row['table_name'],
            data=json.loads(row['data']),
            synced=bool(row['synced']),
            last_modified=row['last_modified'],
            deleted=bool(row['deleted']),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Flat shape handed to callers: domain fields plus sync metadata."""
        record = dict(self.data)
        record.update({
            'id': self.id,
            'tenant_id': self.tenant_id,
            'synced': self.synced,
            'last_modified': self.last_modified,
            'deleted': self.deleted,
        })
        return record


@dataclass
class SyncStatus:
    tenant_id: str
    last_sync: Optional[int] = None
    is_online: bool = True
    pending_mutations: int = 0
    sync_in_progress: bool = False
    sync_started_at: Optional[int] = None
    last_pull: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> 'SyncStatus':
        return cls(
            tenant_id=row['tenant_id'],
            last_sync=row['last_sync'],
            is_online=bool(row['is_online']),
            pending_mutations=row['pending_mutations'],
            sync_in_progress=bool(row['sync_in_progress']),
            sync_started_at=row['sync_started_at'],
            last_pull=row['last_pull'],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncReport:
    """Outcome of one sync cycle."""
    tenant_id: str
    skipped: bool = False
    applied: int = 0
    failed: int = 0
    dropped: int = 0
    deferred: int = 0
    pulled: int = 0
    reason: Optional[str] = None  # why a cycle was skipped
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
