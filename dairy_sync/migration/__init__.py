# dairy_sync/migration/__init__.py
from .feature_flags import (
    FeatureFlags, FeatureFlag, FeatureFlagManager,
    FlagStore, StaticFlagStore, SupabaseFlagStore,
    MIGRATION_PHASES, rollout_bucket
)
from .dual_write import DualWriteCoordinator
from .reconciliation import ReconciliationJob, MIGRATED_TABLES, classify_discrepancies
from .monitor import MigrationMonitor, AlertThresholds, MigrationMetrics

__all__ = [
    'FeatureFlags', 'FeatureFlag', 'FeatureFlagManager',
    'FlagStore', 'StaticFlagStore', 'SupabaseFlagStore',
    'MIGRATION_PHASES', 'rollout_bucket',
    'DualWriteCoordinator',
    'ReconciliationJob', 'MIGRATED_TABLES', 'classify_discrepancies',
    'MigrationMonitor', 'AlertThresholds', 'MigrationMetrics'
]
