# conftest.py
"""
Shared pytest fixtures.

InMemoryDatabase stands in for Firestore and Supabase: same RemoteDatabase
surface, dict storage, and switches to make individual operations fail.
"""
import copy
import threading
from collections import defaultdict

import pytest
from flask_jwt_extended import create_access_token

from dairy_sync import create_app
from dairy_sync.core.config import TestingConfig
from dairy_sync.core.context import build_migration_services
from dairy_sync.core.errors import RemoteDatabaseError
from dairy_sync.migration.feature_flags import StaticFlagStore
from dairy_sync.offline.gateway import RemoteGateway
from dairy_sync.offline.local_store import LocalStore
from dairy_sync.utils.datetime_utils import DateTimeUtils

TENANT = 'tenant-a'


class InMemoryDatabase:
    """RemoteDatabase over nested dicts: tables[table][(tenant_id, id)] = row."""

    def __init__(self, name):
        self.name = name
        self.tables = defaultdict(dict)
        self.calls = []
        self.failing = set()     # operation names that raise
        self.fail_ids = set()    # record ids whose writes raise

    def _check(self, operation, record_id=None):
        self.calls.append((operation, record_id))
        if operation in self.failing or (record_id is not None and record_id in self.fail_ids):
            raise RemoteDatabaseError(f"{self.name} {operation} unavailable", target=self.name)

    def seed(self, table, tenant_id, rows):
        for row in rows:
            stored = dict(row, tenant_id=tenant_id)
            self.tables[table][(tenant_id, row['id'])] = stored

    def rows(self, table, tenant_id):
        return [copy.deepcopy(r) for (t, _), r in self.tables[table].items() if t == tenant_id]

    def insert(self, table, data, tenant_id):
        self._check('insert', data.get('id'))
        key = (tenant_id, data['id'])
        if key in self.tables[table]:
            raise RemoteDatabaseError(f"duplicate key {data['id']}", target=self.name)
        row = dict(data, tenant_id=tenant_id)
        row.setdefault('created_at', DateTimeUtils.to_iso_string(DateTimeUtils.now()))
        row.setdefault('updated_at', row['created_at'])
        self.tables[table][key] = row
        return copy.deepcopy(row)

    def update(self, table, record_id, data, tenant_id):
        self._check('update', record_id)
        key = (tenant_id, record_id)
        if key not in self.tables[table]:
            raise RemoteDatabaseError(f"{table}/{record_id} not found", target=self.name)
        self.tables[table][key].update(data)
        return copy.deepcopy(self.tables[table][key])

    def delete(self, table, record_id, tenant_id):
        self._check('delete', record_id)
        self.tables[table].pop((tenant_id, record_id), None)

    def get(self, table, record_id, tenant_id):
        self._check('get')
        row = self.tables[table].get((tenant_id, record_id))
        return copy.deepcopy(row) if row else None

    def select(self, table, tenant_id, since_date=None, updated_after=None):
        self._check('select')
        rows = self.rows(table, tenant_id)
        if since_date:
            rows = [r for r in rows if r.get('date', '') >= since_date]
        if updated_after:
            cutoff = DateTimeUtils.to_timestamp_ms(updated_after)
            rows = [r for r in rows if DateTimeUtils.to_timestamp_ms(r['updated_at']) > cutoff]
        return rows

    def count(self, table, tenant_id=None):
        self._check('count')
        return sum(1 for (t, _) in self.tables[table] if tenant_id is None or t == tenant_id)

    def list_ids(self, table, tenant_id):
        self._check('list_ids')
        return {rid for (t, rid) in self.tables[table] if t == tenant_id}

    def upsert_many(self, table, rows, tenant_id):
        self._check('upsert_many')
        rows = list(rows)
        for row in rows:
            self.tables[table][(tenant_id, row['id'])] = dict(row, tenant_id=tenant_id)
        return len(rows)

    def list_tenant_ids(self):
        self._check('list_tenant_ids')
        return sorted({t for table in self.tables.values() for (t, _) in table})


class FakeGateway(RemoteGateway):
    """
    Records every applied mutation. `fail_records` holds record ids or
    (record_id, operation) pairs that make apply raise; `gate` blocks apply.
    """

    def __init__(self):
        self.attempts = []
        self.applied = []
        self.fail_records = set()
        self.remote_rows = defaultdict(list)
        self.failing_tables = set()
        self.fetch_calls = []
        self.gate = None
        self.entered = threading.Event()

    def apply(self, mutation):
        self.attempts.append(mutation)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if (mutation.record_id in self.fail_records
                or (mutation.record_id, mutation.operation) in self.fail_records):
            raise RemoteDatabaseError(f"remote rejected {mutation.record_id}")
        self.applied.append(mutation)
        return {'id': mutation.record_id}

    def fetch(self, table, tenant_id, since_date=None, updated_after=None):
        self.fetch_calls.append((table, since_date, updated_after))
        if table in self.failing_tables:
            raise RemoteDatabaseError(f"fetch {table} unavailable")
        return [dict(r) for r in self.remote_rows[table]]


@pytest.fixture
def store():
    local_store = LocalStore(':memory:')
    yield local_store
    local_store.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def firebase():
    return InMemoryDatabase('firebase')


@pytest.fixture
def supabase():
    return InMemoryDatabase('supabase')


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def services(firebase, supabase, sleeps):
    config = {k: getattr(TestingConfig, k) for k in dir(TestingConfig) if k.isupper()}
    return build_migration_services(
        firebase, supabase, config,
        flag_store=StaticFlagStore('PHASE_1_DUAL_WRITE'),
        sleep=sleeps.append
    )


@pytest.fixture
def coordinator(services):
    return services['dual_write']


@pytest.fixture
def app(services):
    flask_app = create_app('testing', services=services)
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    with app.app_context():
        token = create_access_token(identity='user-1')
    return {'Authorization': f'Bearer {token}', 'X-Tenant-Id': TENANT}
