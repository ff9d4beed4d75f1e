# dairy_sync/services/remote_database.py
from typing import Any, Dict, Iterable, List, Optional, Set

from dairy_sync.utils.casing import to_camel_case

# Supabase table -> Firestore collection under tenants/<root>/
FIRESTORE_COLLECTIONS = {
    'animals': 'animals',
    'milk_logs': 'milkLogs',
    'health_records': 'healthRecords',
    'breeding_records': 'breedingRecords',
    'expenses': 'expenses',
    'sales': 'sales',
}


def firestore_collection_name(table: str) -> str:
    return FIRESTORE_COLLECTIONS.get(table, to_camel_case(table))


class RemoteDatabase:
    """
    Common surface of the two systems of record. Rows go in and come out in
    snake_case with `id` and `tenant_id` set. Every method raises
    RemoteDatabaseError on failure.
    """
    name = 'remote'

    def insert(self, table: str, data: Dict[str, Any], tenant_id: str) -> Dict[str, Any]:
        """Create a row. Fails if a row with the same id already exists."""
        raise NotImplementedError

    def update(self, table: str, record_id: str, data: Dict[str, Any], tenant_id: str) -> Dict[str, Any]:
        """Patch an existing row. Fails if the row does not exist."""
        raise NotImplementedError

    def delete(self, table: str, record_id: str, tenant_id: str) -> None:
        """Remove a row. Deleting a missing row is not an error."""
        raise NotImplementedError

    def get(self, table: str, record_id: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def select(self, table: str, tenant_id: str, since_date: Optional[str] = None,
               updated_after: Optional[str] = None) -> List[Dict[str, Any]]:
        """Rows of a tenant; `date >= since_date` and `updated_at > updated_after` when given."""
        raise NotImplementedError

    def count(self, table: str, tenant_id: Optional[str] = None) -> int:
        raise NotImplementedError

    def list_ids(self, table: str, tenant_id: str) -> Set[str]:
        raise NotImplementedError

    def upsert_many(self, table: str, rows: Iterable[Dict[str, Any]], tenant_id: str) -> int:
        """Write rows keyed by id, overwriting existing ones. Returns rows written."""
        raise NotImplementedError

    def list_tenant_ids(self) -> List[str]:
        raise NotImplementedError
