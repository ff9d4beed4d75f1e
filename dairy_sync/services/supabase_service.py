# dairy_sync/services/supabase_service.py
import logging
from typing import Any, Dict, List

from supabase import create_client

from dairy_sync.core.errors import RemoteDatabaseError
from dairy_sync.services.remote_database import RemoteDatabase

BATCH_SIZE = 500
PAGE_SIZE = 1000  # PostgREST default max rows per response


class SupabaseDatabase(RemoteDatabase):
    """Migration target: snake_case Postgres tables with a `tenant_id` column."""
    name = 'supabase'

    def __init__(self, client):
        self.client = client
        logging.info("SupabaseDatabase initialized")

    @classmethod
    def from_config(cls, url: str, service_key: str) -> 'SupabaseDatabase':
        if not url or not service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")
        return cls(create_client(url, service_key))

    def _fail(self, action: str, table: str, error: Exception) -> RemoteDatabaseError:
        logging.error(f"Supabase {action} failed ({table}): {error}")
        return RemoteDatabaseError(f"{action} {table}: {error}", target=self.name)

    def _paged(self, build_query) -> List[Dict[str, Any]]:
        rows, start = [], 0
        while True:
            page = build_query().range(start, start + PAGE_SIZE - 1).execute().data or []
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    def insert(self, table, data, tenant_id):
        row = {**data, 'tenant_id': tenant_id}
        try:
            response = self.client.table(table).insert(row).execute()
        except Exception as e:
            raise self._fail('write', table, e) from e
        return (response.data or [row])[0]

    def update(self, table, record_id, data, tenant_id):
        changes = {k: v for k, v in data.items() if k not in ('id', 'tenant_id')}
        try:
            response = (self.client.table(table).update(changes)
                        .eq('id', record_id).eq('tenant_id', tenant_id).execute())
        except Exception as e:
            raise self._fail('write', table, e) from e
        if not response.data:
            raise RemoteDatabaseError(f"{table}/{record_id} not found", target=self.name)
        return response.data[0]

    def delete(self, table, record_id, tenant_id):
        try:
            self.client.table(table).delete().eq('id', record_id).eq('tenant_id', tenant_id).execute()
        except Exception as e:
            raise self._fail('delete', table, e) from e

    def get(self, table, record_id, tenant_id):
        try:
            response = (self.client.table(table).select('*')
                        .eq('id', record_id).eq('tenant_id', tenant_id).limit(1).execute())
        except Exception as e:
            raise self._fail('read', table, e) from e
        return response.data[0] if response.data else None

    def select(self, table, tenant_id, since_date=None, updated_after=None):
        def build():
            query = self.client.table(table).select('*').eq('tenant_id', tenant_id)
            if since_date:
                query = query.gte('date', since_date)
            if updated_after:
                query = query.gt('updated_at', updated_after)
            return query.order('id')

        try:
            return self._paged(build)
        except Exception as e:
            raise self._fail('read', table, e) from e

    def count(self, table, tenant_id=None):
        try:
            query = self.client.table(table).select('id', count='exact')
            if tenant_id:
                query = query.eq('tenant_id', tenant_id)
            response = query.limit(1).execute()
        except Exception as e:
            raise self._fail('count', table, e) from e
        return response.count or 0

    def list_ids(self, table, tenant_id):
        try:
            rows = self._paged(lambda: self.client.table(table).select('id').eq('tenant_id', tenant_id).order('id'))
        except Exception as e:
            raise self._fail('read', table, e) from e
        return {row['id'] for row in rows}

    def upsert_many(self, table, rows, tenant_id):
        rows = [{**row, 'tenant_id': tenant_id} for row in rows]
        try:
            for start in range(0, len(rows), BATCH_SIZE):
                batch = rows[start:start + BATCH_SIZE]
                self.client.table(table).upsert(batch, on_conflict='id').execute()
        except Exception as e:
            raise self._fail('write', table, e) from e
        logging.info(f"Synced {len(rows)} {table} records to Supabase (tenant: {tenant_id})")
        return len(rows)

    def list_tenant_ids(self):
        try:
            rows = self._paged(lambda: self.client.table('tenants').select('id').order('id'))
        except Exception as e:
            raise self._fail('read', 'tenants', e) from e
        return [row['id'] for row in rows]
