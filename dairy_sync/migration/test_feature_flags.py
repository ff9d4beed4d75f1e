# dairy_sync/migration/test_feature_flags.py
"""
Feature flag tests: phase presets, targeting, rollout buckets and caching.
"""

from unittest.mock import MagicMock

import pytest

from dairy_sync.migration.feature_flags import (
    FeatureFlag, FeatureFlagManager, FeatureFlags, MIGRATION_PHASES,
    StaticFlagStore, SupabaseFlagStore, rollout_bucket
)
from dairy_sync.models.dual_write import WriteMode


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.parametrize('phase, mode, read_source', [
    ('PHASE_1_DUAL_WRITE', WriteMode.DUAL_WRITE, 'firebase'),
    ('PHASE_2_READ_MIGRATION', WriteMode.DUAL_WRITE, 'supabase'),
    ('PHASE_3_WRITE_MIGRATION', WriteMode.DUAL_WRITE, 'supabase'),
    ('PHASE_4_CLEANUP', WriteMode.SUPABASE_ONLY, 'supabase'),
])
def test_phase_presets(phase, mode, read_source):
    flags = FeatureFlagManager(StaticFlagStore(phase)).get_flags(tenant_id='t1')

    assert flags == MIGRATION_PHASES[phase]
    assert flags.write_mode is mode
    assert flags.read_source == read_source


def test_defaults_are_firebase_only():
    flags = FeatureFlagManager(StaticFlagStore()).get_flags()

    assert flags.write_mode is WriteMode.FIREBASE_ONLY
    assert flags.write_targets == ['firebase']
    assert flags.write_to_firebase is True


def test_unknown_phase_rejected():
    with pytest.raises(ValueError):
        StaticFlagStore('PHASE_9')
    with pytest.raises(ValueError):
        FeatureFlagManager(StaticFlagStore()).set_phase('PHASE_9')


def test_write_targets_order():
    assert FeatureFlags(enable_dual_write=True).write_targets == ['supabase', 'firebase']
    assert FeatureFlags(use_supabase_apis=True, write_to_firebase=False).write_targets == ['supabase']


@pytest.mark.parametrize('switches, targets, required', [
    (dict(use_supabase_apis=True), ['supabase', 'firebase'], ['supabase']),
    (dict(write_to_firebase=False), [], ['firebase']),
    (dict(enable_dual_write=True, write_to_firebase=False), ['supabase', 'firebase'], ['supabase', 'firebase']),
    (dict(read_from_supabase=True), ['firebase'], ['firebase']),
])
def test_write_targets_follow_individual_switches(switches, targets, required):
    flags = FeatureFlags(**switches)

    assert flags.write_targets == targets
    assert flags.required_targets == required


def test_rollout_bucket_is_stable():
    assert rollout_bucket('abc') == 54
    assert rollout_bucket('tenant-a') == rollout_bucket('tenant-a')
    assert all(0 <= rollout_bucket(f'user-{i}') < 100 for i in range(200))


def test_flag_evaluation_order():
    """disabled beats everything, then user targets, tenant targets, rollout"""
    assert FeatureFlag('f', enabled=False, rollout_percentage=100).is_enabled_for('u1', 't1') is False

    targeted = FeatureFlag('f', enabled=True, target_users=['u1'], target_tenants=['t1'])
    assert targeted.is_enabled_for('u1') is True
    assert targeted.is_enabled_for('u2', 't1') is False
    assert targeted.is_enabled_for(None, 't1') is True
    assert targeted.is_enabled_for(None, 't2') is False

    assert FeatureFlag('f', enabled=True, rollout_percentage=0).is_enabled_for('u1') is False
    assert FeatureFlag('f', enabled=True, rollout_percentage=100).is_enabled_for('u1') is True

    half = FeatureFlag('f', enabled=True, rollout_percentage=50)
    assert half.is_enabled_for('abc') is False   # bucket 54
    assert FeatureFlag('f', enabled=True, rollout_percentage=55).is_enabled_for('abc') is True


def test_evaluations_are_cached_for_ttl():
    store = StaticFlagStore()
    clock = FakeClock()
    manager = FeatureFlagManager(store, cache_ttl=300, clock=clock)

    assert manager.is_enabled('enable_dual_write', tenant_id='t1') is False

    # written behind the manager's back: stale until the TTL runs out
    store.save_flag('enable_dual_write', {'enabled': True, 'rollout_percentage': 100})
    clock.now = 299
    assert manager.is_enabled('enable_dual_write', tenant_id='t1') is False
    clock.now = 301
    assert manager.is_enabled('enable_dual_write', tenant_id='t1') is True


def test_update_flag_invalidates_cache():
    manager = FeatureFlagManager(StaticFlagStore(), clock=FakeClock())
    assert manager.is_enabled('read_from_supabase') is False

    manager.enable_for_tenants('read_from_supabase', ['t1'])

    assert manager.is_enabled('read_from_supabase', tenant_id='t1') is True
    assert manager.is_enabled('read_from_supabase', tenant_id='t2') is False


def test_set_rollout_percentage_validates_range():
    manager = FeatureFlagManager(StaticFlagStore())
    with pytest.raises(ValueError):
        manager.set_rollout_percentage('enable_dual_write', 101)

    flag = manager.set_rollout_percentage('enable_dual_write', 25)
    assert flag.rollout_percentage == 25
    assert flag.updated_at is not None


def test_store_failure_falls_back_to_defaults_uncached():
    store = MagicMock()
    store.get_flag.side_effect = RuntimeError("supabase down")
    manager = FeatureFlagManager(store)

    assert manager.is_enabled('write_to_firebase') is True
    assert manager.is_enabled('enable_dual_write') is False

    store.get_flag.side_effect = None
    store.get_flag.return_value = FeatureFlag('enable_dual_write', enabled=True, rollout_percentage=100)
    assert manager.is_enabled('enable_dual_write') is True


def test_set_phase_and_current_phase():
    manager = FeatureFlagManager(StaticFlagStore('PHASE_1_DUAL_WRITE'))
    assert manager.current_phase() == 'PHASE_1_DUAL_WRITE'

    manager.set_phase('PHASE_3_WRITE_MIGRATION')
    assert manager.current_phase() == 'PHASE_3_WRITE_MIGRATION'

    manager.update_flag('enable_v2_endpoints', enabled=False)
    assert manager.current_phase() == 'UNKNOWN'


def test_supabase_flag_store():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = [
        {'key': 'enable_dual_write', 'enabled': True, 'rollout_percentage': 100, 'target_tenants': ['t1']}
    ]
    table.upsert.return_value.execute.return_value.data = [
        {'key': 'enable_dual_write', 'enabled': False, 'rollout_percentage': 0}
    ]
    store = SupabaseFlagStore(client)

    flag = store.get_flag('enable_dual_write')
    assert flag.enabled is True
    assert flag.target_tenants == ['t1']
    client.table.assert_called_with('feature_flags')
    table.select.return_value.eq.assert_called_with('key', 'enable_dual_write')

    saved = store.save_flag('enable_dual_write', {'enabled': False})
    row = table.upsert.call_args.args[0]
    assert row['key'] == 'enable_dual_write'
    assert row['enabled'] is False
    assert table.upsert.call_args.kwargs == {'on_conflict': 'key'}
    assert saved.enabled is False
