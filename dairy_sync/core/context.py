# dairy_sync/core/context.py
"""
Explicit wiring of the sync core. Nothing here is a module-level singleton:
the Flask app keeps its services in `app.services`, a client device keeps
one SyncContext, and tests build their own.
"""
import logging
import threading
from typing import Any, Dict, Optional

from dairy_sync.migration.dual_write import DualWriteCoordinator
from dairy_sync.migration.feature_flags import FeatureFlagManager, StaticFlagStore, SupabaseFlagStore
from dairy_sync.migration.monitor import MigrationMonitor
from dairy_sync.migration.reconciliation import ReconciliationJob
from dairy_sync.offline.gateway import CoordinatorGateway, HttpGateway
from dairy_sync.offline.local_store import LocalStore
from dairy_sync.offline.sync_engine import SyncEngine
from dairy_sync.offline.triggers import ConnectivityMonitor
from dairy_sync.services.telemetry import TelemetrySink


def build_migration_services(firebase, supabase, config: Dict[str, Any], flag_store=None,
                             supabase_client=None, sleep=None) -> Dict[str, Any]:
    """Coordinator, flags, reconciliation, monitor and telemetry over two RemoteDatabases."""
    telemetry = TelemetrySink(client=supabase_client if config.get('PERSIST_TELEMETRY') else None)

    if flag_store is None:
        flag_store = StaticFlagStore(config.get('MIGRATION_PHASE'))
    flag_manager = FeatureFlagManager(flag_store, cache_ttl=config.get('FEATURE_FLAG_CACHE_TTL', 300))

    coordinator_kwargs = {}
    if sleep is not None:
        coordinator_kwargs['sleep'] = sleep
    coordinator = DualWriteCoordinator(
        firebase, supabase, flag_manager,
        telemetry=telemetry,
        max_attempts=config.get('DUAL_WRITE_MAX_ATTEMPTS', 3),
        base_delay=config.get('DUAL_WRITE_BASE_DELAY', 1.0),
        max_delay=config.get('DUAL_WRITE_MAX_DELAY', 10.0),
        **coordinator_kwargs
    )
    reconciliation = ReconciliationJob(firebase, supabase, telemetry=telemetry)
    monitor = MigrationMonitor(flag_manager, reconciliation, telemetry, supabase=supabase)

    return {
        'firebase': firebase,
        'supabase': supabase,
        'telemetry': telemetry,
        'feature_flags': flag_manager,
        'dual_write': coordinator,
        'reconciliation': reconciliation,
        'monitor': monitor,
    }


def build_remote_services(config: Dict[str, Any]) -> Dict[str, Any]:
    """Production wiring: Firestore (firebase_admin must be initialized) and Supabase."""
    from dairy_sync.services.firestore_service import FirestoreDatabase
    from dairy_sync.services.supabase_service import SupabaseDatabase

    supabase = SupabaseDatabase.from_config(config.get('SUPABASE_URL'), config.get('SUPABASE_SERVICE_KEY'))
    firebase = FirestoreDatabase(root_document=config.get('FIREBASE_ROOT_DOCUMENT', 'global'))

    flag_store = None
    if not config.get('MIGRATION_PHASE'):
        flag_store = SupabaseFlagStore(supabase.client)
        logging.info("Feature flags loaded from Supabase")

    return build_migration_services(firebase, supabase, config, flag_store=flag_store,
                                    supabase_client=supabase.client)


class SyncContext:
    """
    Client-side sync wiring: one LocalStore, one gateway, and a SyncEngine
    plus ConnectivityMonitor per tenant.
    """

    def __init__(self, store: LocalStore, gateway, telemetry: Optional[TelemetrySink] = None,
                 pull_window_days: int = 30, stale_after_seconds: int = 600,
                 run_in_background: bool = True):
        self.store = store
        self.gateway = gateway
        self.telemetry = telemetry or TelemetrySink()
        self.pull_window_days = pull_window_days
        self.stale_after_ms = stale_after_seconds * 1000
        self.run_in_background = run_in_background
        self._engines: Dict[str, SyncEngine] = {}
        self._monitors: Dict[str, ConnectivityMonitor] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any], coordinator=None, **kwargs) -> 'SyncContext':
        """HTTP gateway when SYNC_API_BASE_URL is set, otherwise the in-process coordinator."""
        if config.get('SYNC_API_BASE_URL'):
            gateway = HttpGateway(config['SYNC_API_BASE_URL'], access_token=config.get('SYNC_API_TOKEN'))
        elif coordinator is not None:
            gateway = CoordinatorGateway(coordinator)
        else:
            raise ValueError("SYNC_API_BASE_URL or a DualWriteCoordinator is required")

        store = LocalStore(config.get('OFFLINE_DB_PATH', ':memory:'),
                           max_retries=config.get('MAX_MUTATION_RETRIES', 5))
        return cls(
            store, gateway,
            pull_window_days=config.get('SYNC_PULL_WINDOW_DAYS', 30),
            stale_after_seconds=config.get('SYNC_STALE_AFTER_SECONDS', 600),
            **kwargs
        )

    def engine_for(self, tenant_id: str) -> SyncEngine:
        with self._lock:
            engine = self._engines.get(tenant_id)
            if engine is None:
                engine = SyncEngine(
                    tenant_id, self.store, self.gateway,
                    telemetry=self.telemetry,
                    pull_window_days=self.pull_window_days,
                    stale_after_ms=self.stale_after_ms,
                )
                self._engines[tenant_id] = engine
            return engine

    def monitor_for(self, tenant_id: str) -> ConnectivityMonitor:
        engine = self.engine_for(tenant_id)
        with self._lock:
            monitor = self._monitors.get(tenant_id)
            if monitor is None:
                monitor = ConnectivityMonitor(engine, run_in_background=self.run_in_background)
                self._monitors[tenant_id] = monitor
            return monitor

    def close(self) -> None:
        with self._lock:
            monitors = list(self._monitors.values())
        for monitor in monitors:
            monitor.stop()
        self.store.close()
