# dairy_sync/migration/feature_flags.py
"""
Feature flags that drive the Firebase -> Supabase migration.

Flags are stored per key (`feature_flags` table in Supabase, or an in-memory
store pinned to a configured phase) and evaluated per tenant/user with
explicit targeting and a stable percentage rollout. Evaluations are cached
for `cache_ttl` seconds.
"""
import logging
import threading
import time
from dataclasses import dataclass, asdict, fields as dataclass_fields
from typing import Any, Callable, Dict, List, Optional

from dairy_sync.models.dual_write import WriteMode, WriteTarget
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)


@dataclass
class FeatureFlags:
    """The five migration switches, already evaluated for one caller."""
    use_supabase_apis: bool = False
    enable_dual_write: bool = False
    read_from_supabase: bool = False
    write_to_firebase: bool = True
    enable_v2_endpoints: bool = False

    @property
    def write_mode(self) -> WriteMode:
        if self.enable_dual_write:
            return WriteMode.DUAL_WRITE
        if self.use_supabase_apis:
            return WriteMode.SUPABASE_ONLY
        return WriteMode.FIREBASE_ONLY

    @property
    def write_targets(self) -> List[str]:
        """
        Databases a write goes to. Independent of the mode: with
        `use_supabase_apis` and `write_to_firebase` both on, Firebase still
        receives the write but only Supabase decides success.
        """
        targets = []
        if self.use_supabase_apis or self.enable_dual_write:
            targets.append(WriteTarget.SUPABASE.value)
        if self.write_to_firebase or self.enable_dual_write:
            targets.append(WriteTarget.FIREBASE.value)
        return targets

    @property
    def required_targets(self) -> List[str]:
        """Targets whose failure fails the write."""
        mode = self.write_mode
        if mode is WriteMode.DUAL_WRITE:
            return self.write_targets
        if mode is WriteMode.SUPABASE_ONLY:
            return [WriteTarget.SUPABASE.value]
        return [WriteTarget.FIREBASE.value]

    @property
    def read_source(self) -> str:
        return WriteTarget.SUPABASE.value if self.read_from_supabase else WriteTarget.FIREBASE.value

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


FLAG_KEYS = [f.name for f in dataclass_fields(FeatureFlags)]

MIGRATION_PHASES = {
    'PHASE_1_DUAL_WRITE': FeatureFlags(
        enable_dual_write=True, write_to_firebase=True, read_from_supabase=False,
        use_supabase_apis=False, enable_v2_endpoints=False,
    ),
    'PHASE_2_READ_MIGRATION': FeatureFlags(
        enable_dual_write=True, write_to_firebase=True, read_from_supabase=True,
        use_supabase_apis=False, enable_v2_endpoints=False,
    ),
    'PHASE_3_WRITE_MIGRATION': FeatureFlags(
        enable_dual_write=True, write_to_firebase=False, read_from_supabase=True,
        use_supabase_apis=True, enable_v2_endpoints=True,
    ),
    'PHASE_4_CLEANUP': FeatureFlags(
        enable_dual_write=False, write_to_firebase=False, read_from_supabase=True,
        use_supabase_apis=True, enable_v2_endpoints=True,
    ),
}


def rollout_bucket(identifier: str) -> int:
    """Stable 0-99 bucket for percentage rollouts (31-multiplier string hash, 32-bit)."""
    value = 0
    for char in identifier:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value) % 100


@dataclass
class FeatureFlag:
    """A stored flag row."""
    key: str
    enabled: bool = False
    rollout_percentage: int = 0
    description: str = ''
    target_users: Optional[List[str]] = None
    target_tenants: Optional[List[str]] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'FeatureFlag':
        return cls(
            key=row['key'],
            enabled=bool(row.get('enabled', False)),
            rollout_percentage=int(row.get('rollout_percentage') or 0),
            description=row.get('description') or '',
            target_users=row.get('target_users'),
            target_tenants=row.get('target_tenants'),
            updated_at=row.get('updated_at'),
        )

    def is_enabled_for(self, user_id: Optional[str] = None, tenant_id: Optional[str] = None) -> bool:
        if not self.enabled:
            return False
        if self.target_users and user_id:
            return user_id in self.target_users
        if self.target_tenants and tenant_id:
            return tenant_id in self.target_tenants
        if self.rollout_percentage < 100:
            return rollout_bucket(user_id or tenant_id or 'anonymous') < self.rollout_percentage
        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_FLAGS = {
    'use_supabase_apis': FeatureFlag('use_supabase_apis', False, 0, 'Use Supabase APIs instead of Firebase'),
    'enable_dual_write': FeatureFlag('enable_dual_write', False, 0, 'Write to both Firebase and Supabase'),
    'read_from_supabase': FeatureFlag('read_from_supabase', False, 0, 'Read data from Supabase instead of Firebase'),
    'write_to_firebase': FeatureFlag('write_to_firebase', True, 100, 'Continue writing to Firebase'),
    'enable_v2_endpoints': FeatureFlag('enable_v2_endpoints', False, 0, 'Enable v2 API endpoints'),
}


def default_flag(key: str) -> FeatureFlag:
    flag = DEFAULT_FLAGS.get(key)
    if flag is None:
        return FeatureFlag(key=key, description='Unknown flag')
    return FeatureFlag(**flag.to_dict())


# ----------------------------------------------------------------------
# flag stores
# ----------------------------------------------------------------------
class FlagStore:
    def get_flag(self, key: str) -> Optional[FeatureFlag]:
        raise NotImplementedError

    def save_flag(self, key: str, updates: Dict[str, Any]) -> FeatureFlag:
        raise NotImplementedError

    def list_flags(self) -> List[FeatureFlag]:
        raise NotImplementedError


class StaticFlagStore(FlagStore):
    """In-memory flags seeded from a migration phase (MIGRATION_PHASE config)."""

    def __init__(self, phase: Optional[str] = None):
        self._lock = threading.Lock()
        self._flags: Dict[str, FeatureFlag] = {key: default_flag(key) for key in FLAG_KEYS}
        if phase:
            if phase not in MIGRATION_PHASES:
                raise ValueError(f"Unknown migration phase: {phase}")
            for key, value in MIGRATION_PHASES[phase].to_dict().items():
                self._flags[key].enabled = value
                self._flags[key].rollout_percentage = 100 if value else 0

    def get_flag(self, key):
        with self._lock:
            flag = self._flags.get(key)
            return FeatureFlag(**flag.to_dict()) if flag else None

    def save_flag(self, key, updates):
        with self._lock:
            flag = self._flags.get(key) or default_flag(key)
            for name, value in updates.items():
                if hasattr(flag, name) and name != 'key':
                    setattr(flag, name, value)
            flag.updated_at = DateTimeUtils.to_iso_string(DateTimeUtils.now())
            self._flags[key] = flag
            return FeatureFlag(**flag.to_dict())

    def list_flags(self):
        with self._lock:
            return [FeatureFlag(**f.to_dict()) for f in self._flags.values()]


class SupabaseFlagStore(FlagStore):
    """Flags kept in the Supabase `feature_flags` table."""

    def __init__(self, client, table: str = 'feature_flags'):
        self.client = client
        self.table = table

    def get_flag(self, key):
        response = self.client.table(self.table).select('*').eq('key', key).limit(1).execute()
        rows = response.data or []
        return FeatureFlag.from_row(rows[0]) if rows else None

    def save_flag(self, key, updates):
        row = {'key': key, 'updated_at': DateTimeUtils.to_iso_string(DateTimeUtils.now())}
        row.update({k: v for k, v in updates.items() if k not in ('key', 'updated_at')})
        response = self.client.table(self.table).upsert(row, on_conflict='key').execute()
        rows = response.data or [row]
        return FeatureFlag.from_row(rows[0])

    def list_flags(self):
        response = self.client.table(self.table).select('*').execute()
        return [FeatureFlag.from_row(r) for r in response.data or []]


# ----------------------------------------------------------------------
# manager
# ----------------------------------------------------------------------
class FeatureFlagManager:
    """Evaluates flags for a (user, tenant) pair with a TTL cache."""

    def __init__(self, store: FlagStore, cache_ttl: float = 300,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._cache: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _cache_key(self, key, user_id, tenant_id) -> str:
        return f"{key}:{user_id or 'global'}:{tenant_id or 'global'}"

    def is_enabled(self, key: str, user_id: Optional[str] = None, tenant_id: Optional[str] = None) -> bool:
        cache_key = self._cache_key(key, user_id, tenant_id)
        now = self.clock()
        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None and now < cached[1]:
                return cached[0]

        try:
            flag = self.store.get_flag(key)
        except Exception as e:
            # Unreadable flag store: evaluate defaults without caching them.
            logger.error(f"Failed to load feature flag '{key}', using default: {e}", exc_info=True)
            return default_flag(key).is_enabled_for(user_id, tenant_id)

        enabled = (flag or default_flag(key)).is_enabled_for(user_id, tenant_id)
        with self._lock:
            self._cache[cache_key] = (enabled, now + self.cache_ttl)
        return enabled

    def get_flags(self, user_id: Optional[str] = None, tenant_id: Optional[str] = None) -> FeatureFlags:
        return FeatureFlags(**{key: self.is_enabled(key, user_id, tenant_id) for key in FLAG_KEYS})

    def list_flags(self) -> List[FeatureFlag]:
        return self.store.list_flags()

    def update_flag(self, key: str, **updates) -> FeatureFlag:
        flag = self.store.save_flag(key, updates)
        self.clear_cache_for_flag(key)
        logger.info(f"Feature flag '{key}' updated: {updates}")
        return flag

    def set_rollout_percentage(self, key: str, percentage: int) -> FeatureFlag:
        if not 0 <= percentage <= 100:
            raise ValueError("rollout percentage must be between 0 and 100")
        return self.update_flag(key, rollout_percentage=percentage)

    def enable_for_users(self, key: str, user_ids: List[str]) -> FeatureFlag:
        return self.update_flag(key, enabled=True, target_users=list(user_ids), rollout_percentage=100)

    def enable_for_tenants(self, key: str, tenant_ids: List[str]) -> FeatureFlag:
        return self.update_flag(key, enabled=True, target_tenants=list(tenant_ids), rollout_percentage=100)

    def set_phase(self, phase: str) -> FeatureFlags:
        """Flip every migration flag to the values of `phase`."""
        if phase not in MIGRATION_PHASES:
            raise ValueError(f"Unknown migration phase: {phase}")
        for key, value in MIGRATION_PHASES[phase].to_dict().items():
            self.update_flag(key, enabled=value, rollout_percentage=100 if value else 0)
        logger.warning(f"Migration phase set to {phase}")
        return MIGRATION_PHASES[phase]

    def current_phase(self, flags: Optional[FeatureFlags] = None) -> str:
        flags = flags or self.get_flags()
        for name, phase_flags in MIGRATION_PHASES.items():
            if phase_flags == flags:
                return name
        return 'UNKNOWN'

    def clear_cache_for_flag(self, key: str) -> None:
        with self._lock:
            for cache_key in [k for k in self._cache if k.startswith(f'{key}:')]:
                del self._cache[cache_key]

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
