# dairy_sync/core/config.py

import os


def _env_bool(key: str, default: str = 'false') -> bool:
    return os.getenv(key, default).strip().lower() in ('1', 'true', 'yes')


class Config:
    """Shared settings. Every environment class inherits from this one."""
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')

    # Firebase (legacy system of record)
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')
    FIREBASE_ROOT_DOCUMENT = os.getenv('FIREBASE_ROOT_DOCUMENT', 'global')

    # Supabase (migration target)
    SUPABASE_URL = os.getenv('SUPABASE_URL')
    SUPABASE_SERVICE_KEY = os.getenv('SUPABASE_SERVICE_KEY')

    # Pin flags to a phase (PHASE_1_DUAL_WRITE ... PHASE_4_CLEANUP); unset reads the feature_flags table
    MIGRATION_PHASE = os.getenv('MIGRATION_PHASE')
    FEATURE_FLAG_CACHE_TTL = int(os.getenv('FEATURE_FLAG_CACHE_TTL', 300))

    # Dual-write retry wrapper
    DUAL_WRITE_MAX_ATTEMPTS = int(os.getenv('DUAL_WRITE_MAX_ATTEMPTS', 3))
    DUAL_WRITE_BASE_DELAY = float(os.getenv('DUAL_WRITE_BASE_DELAY', 1.0))
    DUAL_WRITE_MAX_DELAY = float(os.getenv('DUAL_WRITE_MAX_DELAY', 10.0))

    # Offline store / sync engine
    MAX_MUTATION_RETRIES = int(os.getenv('MAX_MUTATION_RETRIES', 5))
    OFFLINE_DB_PATH = os.getenv('OFFLINE_DB_PATH', 'dairy_offline.sqlite3')
    SYNC_INTERVAL_SECONDS = int(os.getenv('SYNC_INTERVAL_SECONDS', 0))
    SYNC_PULL_WINDOW_DAYS = int(os.getenv('SYNC_PULL_WINDOW_DAYS', 30))
    SYNC_STALE_AFTER_SECONDS = int(os.getenv('SYNC_STALE_AFTER_SECONDS', 600))
    SYNC_API_BASE_URL = os.getenv('SYNC_API_BASE_URL')
    SYNC_API_TOKEN = os.getenv('SYNC_API_TOKEN')

    # Scheduled reconciliation
    CRON_SECRET = os.getenv('CRON_SECRET')
    PERSIST_TELEMETRY = _env_bool('PERSIST_TELEMETRY')


class DevelopmentConfig(Config):
    """Local development: debug on, reloader on."""
    DEBUG = True


class TestingConfig(Config):
    """Test runs: no backoff sleeps, in-memory offline store."""
    TESTING = True
    DEBUG = False
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'test-secret-key-for-dairy-sync-tests')
    MIGRATION_PHASE = 'PHASE_1_DUAL_WRITE'
    DUAL_WRITE_BASE_DELAY = 0.0
    OFFLINE_DB_PATH = ':memory:'
    CRON_SECRET = 'test-cron-secret'
    PERSIST_TELEMETRY = False


class ProductionConfig(Config):
    DEBUG = False


# Maps FLASK_ENV to a config class; used by create_app.
config_by_name = dict(
    development=DevelopmentConfig,
    testing=TestingConfig,
    production=ProductionConfig
)
