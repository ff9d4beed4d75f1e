# dairy_sync/offline/test_local_store.py
"""
LocalStore tests: optimistic writes, soft delete, last-writer-wins merge,
sync status flag and housekeeping.

Usage: python -m pytest dairy_sync/offline/test_local_store.py -v
"""

import pytest
from marshmallow import ValidationError

from dairy_sync.core.errors import RecordNotFoundError, UnknownTableError
from dairy_sync.utils.datetime_utils import DateTimeUtils

TENANT = 'tenant-a'

MILK_LOG = {'animal_id': 'cow-1', 'date': '2024-01-15', 'session': 'morning', 'quantity': 12.5}


def test_add_caches_record_and_enqueues_create(store):
    """add() returns a fresh id, caches the record unsynced and queues a create"""
    record_id = store.add('animals', {'tag': 'A-001', 'name': 'Bella'}, TENANT)

    record = store.get('animals', record_id, TENANT)
    assert record['tag'] == 'A-001'
    assert record['species'] == 'cow'   # schema default
    assert record['synced'] is False
    assert record['tenant_id'] == TENANT

    mutations = store.queue.dequeue_all(TENANT)
    assert len(mutations) == 1
    assert mutations[0].operation == 'create'
    assert mutations[0].record_id == record_id
    assert mutations[0].data['id'] == record_id
    assert mutations[0].data['tenant_id'] == TENANT
    assert store.get_sync_status(TENANT).pending_mutations == 1


def test_add_ignores_client_supplied_id_and_tenant(store):
    record_id = store.add('animals', {'tag': 'A-002', 'id': 'forged', 'tenant_id': 'other'}, TENANT)

    assert record_id != 'forged'
    assert store.get('animals', record_id, TENANT)['tenant_id'] == TENANT
    assert store.get_all('animals', 'other') == []


def test_add_validates_payload(store):
    with pytest.raises(ValidationError):
        store.add('milk_logs', {'animal_id': 'cow-1', 'date': '15/01/2024', 'session': 'noon'}, TENANT)
    with pytest.raises(UnknownTableError):
        store.add('expenses', {'amount': 10}, TENANT)

    # nothing was written or queued
    assert store.queue.pending_count(TENANT) == 0


def test_tenant_isolation(store):
    store.add('animals', {'tag': 'A-001'}, TENANT)
    store.add('animals', {'tag': 'B-001'}, 'tenant-b')

    assert [r['tag'] for r in store.get_all('animals', TENANT)] == ['A-001']
    assert [r['tag'] for r in store.get_all('animals', 'tenant-b')] == ['B-001']
    assert len(store.queue.dequeue_all(TENANT)) == 1


def test_update_merges_patch_and_enqueues_changes_only(store):
    record_id = store.add('animals', {'tag': 'A-001', 'name': 'Bella'}, TENANT)
    before = store.get_entity('animals', record_id, TENANT)

    merged = store.update('animals', record_id, {'name': 'Daisy'}, TENANT)

    assert merged['name'] == 'Daisy'
    assert merged['tag'] == 'A-001'
    assert merged['last_modified'] > before.last_modified
    update = store.queue.dequeue_all(TENANT)[-1]
    assert update.operation == 'update'
    assert update.data == {'name': 'Daisy', 'id': record_id, 'tenant_id': TENANT}


def test_update_missing_record_raises(store):
    with pytest.raises(RecordNotFoundError):
        store.update('animals', 'missing', {'name': 'x'}, TENANT)


def test_delete_is_soft_until_confirmed(store):
    """Deleted records disappear from reads but stay cached until purge()"""
    record_id = store.add('animals', {'tag': 'A-001'}, TENANT)
    store.delete('animals', record_id, TENANT)

    assert store.get('animals', record_id, TENANT) is None
    assert store.get_all('animals', TENANT) == []
    entity = store.get_entity('animals', record_id, TENANT)
    assert entity.deleted is True
    assert [m.operation for m in store.queue.dequeue_all(TENANT)] == ['create', 'delete']

    with pytest.raises(RecordNotFoundError):
        store.update('animals', record_id, {'name': 'x'}, TENANT)

    store.purge('animals', record_id, TENANT)
    assert store.get_entity('animals', record_id, TENANT) is None


def test_get_all_keeps_storage_order(store):
    ids = [store.add('animals', {'tag': f'A-{i:03d}'}, TENANT) for i in range(5)]
    store.update('animals', ids[0], {'name': 'first'}, TENANT)

    assert [r['id'] for r in store.get_all('animals', TENANT)] == ids


def test_get_recent_orders_by_date(store):
    store.add('milk_logs', dict(MILK_LOG, date='2024-01-10'), TENANT)
    store.add('milk_logs', dict(MILK_LOG, date='2024-01-12'), TENANT)
    store.add('milk_logs', dict(MILK_LOG, date='2024-01-11', animal_id='cow-2'), TENANT)

    assert [r['date'] for r in store.get_recent('milk_logs', TENANT)] == ['2024-01-12', '2024-01-11', '2024-01-10']
    assert [r['date'] for r in store.get_recent('milk_logs', TENANT, animal_id='cow-1', limit=1)] == ['2024-01-12']

    with pytest.raises(UnknownTableError):
        store.get_recent('animals', TENANT)


def test_upsert_from_remote_last_writer_wins(store):
    """A remote row replaces the local copy only when it is newer"""
    remote = {'id': 'cow-1', 'tag': 'R-1', 'tenant_id': TENANT, 'updated_at': '2024-01-15T10:00:00Z'}
    assert store.upsert_from_remote('animals', TENANT, remote) is True

    cached = store.get('animals', 'cow-1', TENANT)
    assert cached['tag'] == 'R-1'
    assert cached['synced'] is True
    assert cached['last_modified'] == DateTimeUtils.to_timestamp_ms('2024-01-15T10:00:00Z')

    older = dict(remote, tag='R-OLD', updated_at='2024-01-14T10:00:00Z')
    assert store.upsert_from_remote('animals', TENANT, older) is False
    assert store.get('animals', 'cow-1', TENANT)['tag'] == 'R-1'

    # local edit is newer than any of the remote rows
    store.update('animals', 'cow-1', {'name': 'local'}, TENANT)
    assert store.upsert_from_remote('animals', TENANT, dict(remote, tag='R-2')) is False
    assert store.get('animals', 'cow-1', TENANT)['name'] == 'local'


def test_upsert_from_remote_keeps_record_unsynced_while_pending(store):
    record_id = store.add('animals', {'tag': 'A-001'}, TENANT)
    future = DateTimeUtils.ms_to_iso(DateTimeUtils.now_ms() + 60_000)

    assert store.upsert_from_remote('animals', TENANT, {'id': record_id, 'tag': 'R', 'updated_at': future})
    assert store.get('animals', record_id, TENANT)['synced'] is False


def test_newer_remote_row_does_not_revive_pending_delete(store):
    store.upsert_from_remote('animals', TENANT, {'id': 'cow-1', 'tag': 'A-001', 'updated_at': '2020-01-01T00:00:00Z'})
    store.delete('animals', 'cow-1', TENANT)

    changed = store.upsert_from_remote('animals', TENANT,
                                       {'id': 'cow-1', 'tag': 'A-001', 'updated_at': '2099-01-01T00:00:00Z'})

    assert changed is False
    assert store.get_all('animals', TENANT) == []
    assert store.get('animals', 'cow-1', TENANT) is None
    assert store.queue.pending_count(TENANT) == 1


def test_upsert_from_remote_without_id_is_ignored(store):
    assert store.upsert_from_remote('animals', TENANT, {'tag': 'no-id'}) is False


def test_try_begin_sync_is_exclusive(store):
    store.ensure_tenant(TENANT)

    assert store.try_begin_sync(TENANT, stale_after_ms=60_000) is True
    assert store.try_begin_sync(TENANT, stale_after_ms=60_000) is False
    assert store.get_sync_status(TENANT).sync_in_progress is True

    store.finish_sync(TENANT)
    status = store.get_sync_status(TENANT)
    assert status.sync_in_progress is False
    assert status.last_sync is not None
    assert store.try_begin_sync(TENANT, stale_after_ms=60_000) is True


def test_try_begin_sync_takes_over_stale_flag(store):
    store.update_sync_status(TENANT, sync_in_progress=True, sync_started_at=DateTimeUtils.now_ms() - 120_000)

    assert store.try_begin_sync(TENANT, stale_after_ms=60_000) is True


def test_finish_sync_failure_keeps_last_sync(store):
    store.ensure_tenant(TENANT)
    store.try_begin_sync(TENANT, 60_000)
    store.finish_sync(TENANT, succeeded=False)

    status = store.get_sync_status(TENANT)
    assert status.last_sync is None
    assert status.sync_in_progress is False


def test_update_sync_status_rejects_unknown_fields(store):
    with pytest.raises(ValueError):
        store.update_sync_status(TENANT, tenant_id='other')


def test_cleanup_old_data_only_removes_synced_time_series(store):
    old_date = DateTimeUtils.to_date_string(DateTimeUtils.days_ago(45))
    recent_date = DateTimeUtils.to_date_string(DateTimeUtils.days_ago(2))
    stamp = '2024-01-15T10:00:00Z'

    store.upsert_from_remote('milk_logs', TENANT, dict(MILK_LOG, id='old', date=old_date, updated_at=stamp))
    store.upsert_from_remote('milk_logs', TENANT, dict(MILK_LOG, id='new', date=recent_date, updated_at=stamp))
    unsynced_id = store.add('milk_logs', dict(MILK_LOG, date=old_date), TENANT)
    store.upsert_from_remote('animals', TENANT, {'id': 'cow-1', 'tag': 'A', 'date': old_date, 'updated_at': stamp})

    assert store.cleanup_old_data(TENANT, days=30) == 1

    remaining = {r['id'] for r in store.get_all('milk_logs', TENANT)}
    assert remaining == {'new', unsynced_id}
    assert store.get('animals', 'cow-1', TENANT) is not None


def test_clear_tenant(store):
    store.add('animals', {'tag': 'A-001'}, TENANT)
    store.clear_tenant(TENANT)

    assert store.get_all('animals', TENANT) == []
    assert store.queue.pending_count(TENANT) == 0
    assert store.get_sync_status(TENANT) is None


def test_file_backed_store_survives_restart(tmp_path):
    """Queued mutations are durable across process restarts"""
    from dairy_sync.offline.local_store import LocalStore

    path = str(tmp_path / 'offline.sqlite3')
    first = LocalStore(path)
    record_id = first.add('animals', {'tag': 'A-001'}, TENANT)
    first.close()

    second = LocalStore(path)
    try:
        assert second.get('animals', record_id, TENANT)['tag'] == 'A-001'
        assert [m.record_id for m in second.queue.dequeue_all(TENANT)] == [record_id]
    finally:
        second.close()
