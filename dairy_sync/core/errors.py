# dairy_sync/core/errors.py
"""Exceptions raised across the sync core."""


class LocalStoreError(RuntimeError):
    """The local sqlite store failed. Never retried; surfaced to the caller."""


class RecordNotFoundError(LookupError):
    def __init__(self, table: str, record_id: str, tenant_id: str):
        self.table = table
        self.record_id = record_id
        self.tenant_id = tenant_id
        super().__init__(f"{table}/{record_id} not found for tenant {tenant_id}")


class RemoteDatabaseError(RuntimeError):
    """A Firestore / Supabase / HTTP call failed. Treated as transient."""

    def __init__(self, message: str, target: str = None):
        self.target = target
        super().__init__(message)


class UnknownTableError(ValueError):
    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Unknown table: {table}")
