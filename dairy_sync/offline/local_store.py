# dairy_sync/offline/local_store.py
"""
Tenant-scoped local cache of synced records, backed by sqlite3.

Every optimistic write (add/update/delete) stores the record and enqueues the
matching mutation inside one sqlite transaction, so the cache and the queue
never disagree after a crash.
"""
import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from dairy_sync.core.errors import LocalStoreError, RecordNotFoundError, UnknownTableError
from dairy_sync.models.sync import (
    CachedEntity, MutationOperation, QueuedMutation, SyncStatus, SyncTable, TIME_SERIES_TABLES
)
from dairy_sync.offline.mutation_queue import MutationQueue
from dairy_sync.schemas.records import validate_payload
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cached_records (
    table_name    TEXT    NOT NULL,
    tenant_id     TEXT    NOT NULL,
    id            TEXT    NOT NULL,
    data          TEXT    NOT NULL,
    synced        INTEGER NOT NULL DEFAULT 0,
    last_modified INTEGER NOT NULL,
    deleted       INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (table_name, tenant_id, id)
);
CREATE INDEX IF NOT EXISTS idx_cached_records_tenant
    ON cached_records (tenant_id, table_name, synced);

CREATE TABLE IF NOT EXISTS queued_mutations (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT    NOT NULL UNIQUE,
    tenant_id   TEXT    NOT NULL,
    table_name  TEXT    NOT NULL,
    operation   TEXT    NOT NULL,
    record_id   TEXT    NOT NULL,
    data        TEXT    NOT NULL,
    timestamp   INTEGER NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_queued_mutations_tenant
    ON queued_mutations (tenant_id, seq);

CREATE TABLE IF NOT EXISTS sync_status (
    tenant_id         TEXT PRIMARY KEY,
    last_sync         INTEGER,
    is_online         INTEGER NOT NULL DEFAULT 1,
    pending_mutations INTEGER NOT NULL DEFAULT 0,
    sync_in_progress  INTEGER NOT NULL DEFAULT 0,
    sync_started_at   INTEGER,
    last_pull         INTEGER
);
"""

_STATUS_FIELDS = (
    'last_sync', 'is_online', 'pending_mutations',
    'sync_in_progress', 'sync_started_at', 'last_pull'
)


def _table_name(table) -> str:
    try:
        return SyncTable(table).value
    except ValueError:
        raise UnknownTableError(str(table))


class LocalStore:
    """
    Local persistence for cached records, the mutation queue and per-tenant
    sync status. Safe to share between threads: the single connection is
    guarded by an RLock and writes run under `BEGIN IMMEDIATE`.
    """

    def __init__(self, db_path: str = ':memory:', max_retries: int = 5):
        self.db_path = db_path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            if db_path != ':memory:':
                self._conn.execute('PRAGMA journal_mode=WAL')
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to open local store at {db_path}: {e}") from e

        self.queue = MutationQueue(self, max_retries=max_retries)
        self._tenant_locks = {}
        logger.info(f"LocalStore initialized ({db_path})")

    # ------------------------------------------------------------------
    # connection helpers
    # ------------------------------------------------------------------
    @contextmanager
    def transaction(self):
        """Write transaction. sqlite failures surface as LocalStoreError."""
        with self._lock:
            try:
                self._conn.execute('BEGIN IMMEDIATE')
            except sqlite3.Error as e:
                raise LocalStoreError(f"Could not start transaction: {e}") from e
            try:
                yield self._conn
            except sqlite3.Error as e:
                self._conn.execute('ROLLBACK')
                raise LocalStoreError(f"Local store write failed: {e}") from e
            except BaseException:
                self._conn.execute('ROLLBACK')
                raise
            try:
                self._conn.execute('COMMIT')
            except sqlite3.Error as e:
                self._conn.execute('ROLLBACK')
                raise LocalStoreError(f"Local store commit failed: {e}") from e

    @contextmanager
    def writing(self, conn=None):
        """Join the caller's transaction when one is passed, otherwise open one."""
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    def fetchall(self, sql: str, params=()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise LocalStoreError(f"Local store read failed: {e}") from e

    def fetchone(self, sql: str, params=()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise LocalStoreError(f"Local store read failed: {e}") from e

    def tenant_lock(self, tenant_id: str) -> threading.Lock:
        """In-process sync lock for a tenant, shared by every engine on this store."""
        with self._lock:
            return self._tenant_locks.setdefault(tenant_id, threading.Lock())

    def close(self):
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error as e:
                raise LocalStoreError(f"Failed to close local store: {e}") from e

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get_all(self, table: str, tenant_id: str) -> List[Dict[str, Any]]:
        """Non-deleted records of a tenant, in storage order."""
        rows = self.fetchall(
            'SELECT * FROM cached_records WHERE table_name = ? AND tenant_id = ? AND deleted = 0 '
            'ORDER BY rowid',
            (_table_name(table), tenant_id)
        )
        return [CachedEntity.from_row(r).to_dict() for r in rows]

    def get(self, table: str, record_id: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        entity = self.get_entity(table, record_id, tenant_id)
        if entity is None or entity.deleted:
            return None
        return entity.to_dict()

    def get_entity(self, table: str, record_id: str, tenant_id: str) -> Optional[CachedEntity]:
        """Raw cache entry including soft-deleted ones."""
        row = self.fetchone(
            'SELECT * FROM cached_records WHERE table_name = ? AND tenant_id = ? AND id = ?',
            (_table_name(table), tenant_id, record_id)
        )
        return CachedEntity.from_row(row) if row else None

    def get_recent(self, table: str, tenant_id: str, animal_id: Optional[str] = None,
                   limit: int = 30) -> List[Dict[str, Any]]:
        """Latest time-series entries (by `date`), optionally for one animal."""
        table = _table_name(table)
        if table not in TIME_SERIES_TABLES:
            raise UnknownTableError(table)

        sql = ('SELECT * FROM cached_records WHERE table_name = ? AND tenant_id = ? AND deleted = 0')
        params = [table, tenant_id]
        if animal_id:
            sql += " AND json_extract(data, '$.animal_id') = ?"
            params.append(animal_id)
        sql += " ORDER BY json_extract(data, '$.date') DESC, rowid DESC LIMIT ?"
        params.append(limit)

        return [CachedEntity.from_row(r).to_dict() for r in self.fetchall(sql, params)]

    def count_unsynced(self, tenant_id: str) -> int:
        row = self.fetchone(
            'SELECT COUNT(*) AS n FROM cached_records WHERE tenant_id = ? AND synced = 0',
            (tenant_id,)
        )
        return row['n']

    # ------------------------------------------------------------------
    # optimistic writes
    # ------------------------------------------------------------------
    def add(self, table: str, record: Dict[str, Any], tenant_id: str) -> str:
        """Store a new record and enqueue its `create` mutation. Returns the new id."""
        table = _table_name(table)
        data = validate_payload(table, MutationOperation.CREATE.value, record)
        data.pop('id', None)

        record_id = str(uuid.uuid4())
        now = DateTimeUtils.now_ms()

        with self.transaction() as conn:
            conn.execute(
                'INSERT INTO cached_records (table_name, tenant_id, id, data, synced, last_modified, deleted) '
                'VALUES (?, ?, ?, ?, 0, ?, 0)',
                (table, tenant_id, record_id, json.dumps(data), now)
            )
            self._enqueue(conn, tenant_id, table, MutationOperation.CREATE, record_id, data, now)

        logger.debug(f"Local create {table}/{record_id} (tenant: {tenant_id})")
        return record_id

    def update(self, table: str, record_id: str, patch: Dict[str, Any], tenant_id: str) -> Dict[str, Any]:
        """Merge `patch` into the cached record and enqueue an `update` mutation."""
        table = _table_name(table)
        changes = validate_payload(table, MutationOperation.UPDATE.value, patch)
        changes.pop('id', None)

        with self.transaction() as conn:
            row = self._live_row(conn, table, record_id, tenant_id)
            merged = json.loads(row['data'])
            merged.update(changes)
            now = max(DateTimeUtils.now_ms(), row['last_modified'] + 1)

            conn.execute(
                'UPDATE cached_records SET data = ?, synced = 0, last_modified = ? '
                'WHERE table_name = ? AND tenant_id = ? AND id = ?',
                (json.dumps(merged), now, table, tenant_id, record_id)
            )
            self._enqueue(conn, tenant_id, table, MutationOperation.UPDATE, record_id, changes, now)

        logger.debug(f"Local update {table}/{record_id} (tenant: {tenant_id})")
        entity = CachedEntity(record_id, tenant_id, table, merged, False, now)
        return entity.to_dict()

    def delete(self, table: str, record_id: str, tenant_id: str) -> None:
        """Soft delete: hidden from reads, kept until the delete is confirmed remotely."""
        table = _table_name(table)

        with self.transaction() as conn:
            row = self._live_row(conn, table, record_id, tenant_id)
            now = max(DateTimeUtils.now_ms(), row['last_modified'] + 1)
            conn.execute(
                'UPDATE cached_records SET deleted = 1, synced = 0, last_modified = ? '
                'WHERE table_name = ? AND tenant_id = ? AND id = ?',
                (now, table, tenant_id, record_id)
            )
            self._enqueue(conn, tenant_id, table, MutationOperation.DELETE, record_id, {}, now)

        logger.debug(f"Local delete {table}/{record_id} (tenant: {tenant_id})")

    def _live_row(self, conn, table: str, record_id: str, tenant_id: str) -> sqlite3.Row:
        row = conn.execute(
            'SELECT * FROM cached_records '
            'WHERE table_name = ? AND tenant_id = ? AND id = ? AND deleted = 0',
            (table, tenant_id, record_id)
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(table, record_id, tenant_id)
        return row

    def _enqueue(self, conn, tenant_id, table, operation, record_id, data, timestamp):
        payload = dict(data)
        payload.update({'id': record_id, 'tenant_id': tenant_id})
        mutation = QueuedMutation(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            table=table,
            operation=operation.value,
            record_id=record_id,
            data=payload,
            timestamp=timestamp,
        )
        self.queue.enqueue(mutation, conn=conn)
        self._ensure_status_row(conn, tenant_id)
        self.refresh_pending(tenant_id, conn=conn)

    # ------------------------------------------------------------------
    # used by the sync engine
    # ------------------------------------------------------------------
    def mark_synced(self, table: str, record_id: str, tenant_id: str, conn=None) -> None:
        with self.writing(conn) as c:
            c.execute(
                'UPDATE cached_records SET synced = 1 WHERE table_name = ? AND tenant_id = ? AND id = ?',
                (_table_name(table), tenant_id, record_id)
            )

    def purge(self, table: str, record_id: str, tenant_id: str, conn=None) -> None:
        """Physically remove a record once its delete has been confirmed."""
        with self.writing(conn) as c:
            c.execute(
                'DELETE FROM cached_records WHERE table_name = ? AND tenant_id = ? AND id = ?',
                (_table_name(table), tenant_id, record_id)
            )

    def upsert_from_remote(self, table: str, tenant_id: str, remote: Dict[str, Any]) -> bool:
        """
        Last-writer-wins merge of one remote row. The row is written only when
        its `updated_at` (or `created_at`) is newer than the local `last_modified`.
        Returns True when the local copy changed.
        """
        table = _table_name(table)
        record_id = remote.get('id')
        if not record_id:
            logger.warning(f"Remote {table} row without id ignored (tenant: {tenant_id})")
            return False

        stamp = remote.get('updated_at') or remote.get('created_at')
        remote_ts = DateTimeUtils.to_timestamp_ms(stamp) if stamp is not None else 0

        data = {k: v for k, v in remote.items() if k not in ('id', 'tenant_id', 'tenantId')}

        with self.transaction() as conn:
            local = conn.execute(
                'SELECT last_modified, deleted FROM cached_records WHERE table_name = ? AND tenant_id = ? AND id = ?',
                (table, tenant_id, record_id)
            ).fetchone()
            if local is not None and local['last_modified'] >= remote_ts:
                return False

            pending = self.queue.has_pending(tenant_id, table, record_id, conn=conn)
            # a local delete stays hidden until the server confirms it
            if local is not None and local['deleted'] and pending:
                return False
            conn.execute(
                'INSERT INTO cached_records (table_name, tenant_id, id, data, synced, last_modified, deleted) '
                'VALUES (?, ?, ?, ?, ?, ?, 0) '
                'ON CONFLICT (table_name, tenant_id, id) DO UPDATE SET '
                'data = excluded.data, synced = excluded.synced, '
                'last_modified = excluded.last_modified, deleted = 0',
                (table, tenant_id, record_id, json.dumps(data, default=str), 0 if pending else 1, remote_ts)
            )
        return True

    # ------------------------------------------------------------------
    # sync status
    # ------------------------------------------------------------------
    def _ensure_status_row(self, conn, tenant_id: str) -> None:
        conn.execute(
            'INSERT OR IGNORE INTO sync_status (tenant_id, is_online, pending_mutations, sync_in_progress) '
            'VALUES (?, 1, 0, 0)',
            (tenant_id,)
        )

    def ensure_tenant(self, tenant_id: str) -> SyncStatus:
        """Create the tenant's status row on first use."""
        with self.transaction() as conn:
            self._ensure_status_row(conn, tenant_id)
        return self.get_sync_status(tenant_id)

    def get_sync_status(self, tenant_id: str) -> Optional[SyncStatus]:
        row = self.fetchone('SELECT * FROM sync_status WHERE tenant_id = ?', (tenant_id,))
        return SyncStatus.from_row(row) if row else None

    def update_sync_status(self, tenant_id: str, conn=None, **changes) -> None:
        unknown = set(changes) - set(_STATUS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown sync status fields: {', '.join(sorted(unknown))}")
        if not changes:
            return

        assignments = ', '.join(f'{key} = ?' for key in changes)
        values = [int(v) if isinstance(v, bool) else v for v in changes.values()]
        with self.writing(conn) as c:
            self._ensure_status_row(c, tenant_id)
            c.execute(f'UPDATE sync_status SET {assignments} WHERE tenant_id = ?', (*values, tenant_id))

    def refresh_pending(self, tenant_id: str, conn=None) -> None:
        with self.writing(conn) as c:
            c.execute(
                'UPDATE sync_status SET pending_mutations = '
                '(SELECT COUNT(*) FROM queued_mutations WHERE tenant_id = ?) WHERE tenant_id = ?',
                (tenant_id, tenant_id)
            )

    def try_begin_sync(self, tenant_id: str, stale_after_ms: int) -> bool:
        """
        Atomically set `sync_in_progress`. Fails when another sync holds the
        flag, unless that flag is older than `stale_after_ms`.
        """
        now = DateTimeUtils.now_ms()
        with self.transaction() as conn:
            self._ensure_status_row(conn, tenant_id)
            cursor = conn.execute(
                'UPDATE sync_status SET sync_in_progress = 1, sync_started_at = ? '
                'WHERE tenant_id = ? AND (sync_in_progress = 0 OR sync_started_at IS NULL '
                'OR sync_started_at < ?)',
                (now, tenant_id, now - stale_after_ms)
            )
            return cursor.rowcount == 1

    def finish_sync(self, tenant_id: str, succeeded: bool = True) -> None:
        """Clear the flag, refresh the pending count and stamp `last_sync`."""
        with self.transaction() as conn:
            if succeeded:
                conn.execute('UPDATE sync_status SET last_sync = ? WHERE tenant_id = ?',
                             (DateTimeUtils.now_ms(), tenant_id))
            conn.execute(
                'UPDATE sync_status SET sync_in_progress = 0, sync_started_at = NULL WHERE tenant_id = ?',
                (tenant_id,)
            )
            self.refresh_pending(tenant_id, conn=conn)

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------
    def cleanup_old_data(self, tenant_id: Optional[str] = None, days: int = 30) -> int:
        """Drop synced time-series rows whose `date` fell out of the pull window."""
        cutoff = DateTimeUtils.to_date_string(DateTimeUtils.days_ago(days))
        placeholders = ', '.join('?' for _ in TIME_SERIES_TABLES)
        sql = (f'DELETE FROM cached_records WHERE table_name IN ({placeholders}) '
               "AND synced = 1 AND json_extract(data, '$.date') < ?")
        params = [*TIME_SERIES_TABLES, cutoff]
        if tenant_id:
            sql += ' AND tenant_id = ?'
            params.append(tenant_id)

        with self.transaction() as conn:
            removed = conn.execute(sql, params).rowcount

        if removed:
            logger.info(f"Removed {removed} cached rows older than {cutoff}")
        return removed

    def clear_tenant(self, tenant_id: str) -> None:
        """Forget everything about a tenant, queued mutations included."""
        with self.transaction() as conn:
            conn.execute('DELETE FROM cached_records WHERE tenant_id = ?', (tenant_id,))
            conn.execute('DELETE FROM queued_mutations WHERE tenant_id = ?', (tenant_id,))
            conn.execute('DELETE FROM sync_status WHERE tenant_id = ?', (tenant_id,))
        logger.warning(f"Local data cleared for tenant {tenant_id}")
