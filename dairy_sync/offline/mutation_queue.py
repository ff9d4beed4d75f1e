# dairy_sync/offline/mutation_queue.py
import json
import logging
from typing import List, Optional

from dairy_sync.models.sync import QueuedMutation

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5


class MutationQueue:
    """
    Durable FIFO of local writes awaiting remote confirmation.

    Rows live in the store's `queued_mutations` table; `seq` (autoincrement)
    is the enqueue order. Entries are appended only, never merged, and are
    removed either after a confirmed remote write or after exhausting
    `max_retries`.
    """

    def __init__(self, store, max_retries: int = DEFAULT_MAX_RETRIES):
        self.store = store
        self.max_retries = max_retries

    def enqueue(self, mutation: QueuedMutation, conn=None) -> QueuedMutation:
        with self.store.writing(conn) as c:
            cursor = c.execute(
                'INSERT INTO queued_mutations '
                '(id, tenant_id, table_name, operation, record_id, data, timestamp, retry_count) '
                'VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
                (mutation.id, mutation.tenant_id, mutation.table, mutation.operation,
                 mutation.record_id, json.dumps(mutation.data), mutation.timestamp,
                 mutation.retry_count)
            )
            mutation.seq = cursor.lastrowid
        return mutation

    def dequeue_all(self, tenant_id: str) -> List[QueuedMutation]:
        """Snapshot of the tenant's pending mutations in enqueue order. Nothing is removed."""
        rows = self.store.fetchall(
            'SELECT * FROM queued_mutations WHERE tenant_id = ? ORDER BY seq',
            (tenant_id,)
        )
        return [QueuedMutation.from_row(r) for r in rows]

    def get(self, mutation_id: str) -> Optional[QueuedMutation]:
        row = self.store.fetchone('SELECT * FROM queued_mutations WHERE id = ?', (mutation_id,))
        return QueuedMutation.from_row(row) if row else None

    def remove(self, mutation_id: str, conn=None) -> bool:
        with self.store.writing(conn) as c:
            cursor = c.execute('DELETE FROM queued_mutations WHERE id = ?', (mutation_id,))
            return cursor.rowcount == 1

    def increment_retry(self, mutation_id: str) -> int:
        """
        Bump the retry count and return it. When the count reaches
        `max_retries` the mutation is dropped and logged as a permanent failure.
        Returns 0 for an unknown id.
        """
        with self.store.transaction() as conn:
            conn.execute(
                'UPDATE queued_mutations SET retry_count = retry_count + 1 WHERE id = ?',
                (mutation_id,)
            )
            row = conn.execute('SELECT * FROM queued_mutations WHERE id = ?', (mutation_id,)).fetchone()
            if row is None:
                return 0

            retry_count = row['retry_count']
            if retry_count >= self.max_retries:
                conn.execute('DELETE FROM queued_mutations WHERE id = ?', (mutation_id,))
                logger.error(
                    f"Mutation {mutation_id} dropped after {retry_count} failed attempts "
                    f"({row['operation']} {row['table_name']}/{row['record_id']}, tenant: {row['tenant_id']})"
                )
            return retry_count

    def is_exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_retries

    def pending_count(self, tenant_id: str) -> int:
        row = self.store.fetchone(
            'SELECT COUNT(*) AS n FROM queued_mutations WHERE tenant_id = ?', (tenant_id,)
        )
        return row['n']

    def has_pending(self, tenant_id: str, table: str, record_id: str, conn=None) -> bool:
        sql = ('SELECT 1 FROM queued_mutations '
               'WHERE tenant_id = ? AND table_name = ? AND record_id = ? LIMIT 1')
        params = (tenant_id, table, record_id)
        if conn is not None:
            return conn.execute(sql, params).fetchone() is not None
        return self.store.fetchone(sql, params) is not None
