# dairy_sync/services/firestore_service.py
import logging
import uuid
from typing import Any, Dict, List

from firebase_admin import firestore

from dairy_sync.core.errors import RemoteDatabaseError
from dairy_sync.services.remote_database import RemoteDatabase, firestore_collection_name
from dairy_sync.utils.casing import keys_to_camel, keys_to_snake
from dairy_sync.utils.datetime_utils import DateTimeUtils

BATCH_LIMIT = 500  # Firestore batched write limit


class FirestoreDatabase(RemoteDatabase):
    """
    Legacy system of record. Collections live under `tenants/<root>/`
    (`tenants/global/milkLogs`, ...) with camelCase fields and a `tenantId`
    field on every document. Document ids match Supabase row ids.
    """
    name = 'firebase'

    def __init__(self, client=None, root_document: str = 'global'):
        self.db = client or firestore.client()
        self.root_document = root_document
        logging.info(f"FirestoreDatabase initialized (root: tenants/{root_document})")

    def collection(self, table: str):
        return (self.db.collection('tenants')
                .document(self.root_document)
                .collection(firestore_collection_name(table)))

    def _to_document(self, data: Dict[str, Any], tenant_id: str) -> Dict[str, Any]:
        payload = {k: v for k, v in data.items() if k != 'id'}
        payload['tenant_id'] = tenant_id
        if 'updated_at' in payload and isinstance(payload['updated_at'], str):
            payload['updated_at'] = DateTimeUtils.parse_iso_datetime(payload['updated_at'])
        return DateTimeUtils.for_firestore(keys_to_camel(payload))

    def _from_snapshot(self, snapshot) -> Dict[str, Any]:
        row = keys_to_snake(DateTimeUtils.from_firestore(snapshot.to_dict() or {}))
        row['id'] = snapshot.id
        return row

    def _owned(self, snapshot, tenant_id: str) -> bool:
        return snapshot.exists and (snapshot.to_dict() or {}).get('tenantId') == tenant_id

    def insert(self, table, data, tenant_id):
        record_id = data.get('id') or str(uuid.uuid4())
        try:
            doc_ref = self.collection(table).document(record_id)
            # create() fails when the document already exists
            doc_ref.create(self._to_document(data, tenant_id))
        except Exception as e:
            logging.error(f"Firestore insert failed ({table}/{record_id}): {e}")
            raise RemoteDatabaseError(f"insert {table}/{record_id}: {e}", target=self.name) from e
        return {**data, 'id': record_id, 'tenant_id': tenant_id}

    def update(self, table, record_id, data, tenant_id):
        try:
            doc_ref = self.collection(table).document(record_id)
            snapshot = doc_ref.get()
            if not self._owned(snapshot, tenant_id):
                raise RemoteDatabaseError(f"{table}/{record_id} not found", target=self.name)
            doc_ref.update(self._to_document(data, tenant_id))
            return self._from_snapshot(doc_ref.get())
        except RemoteDatabaseError:
            raise
        except Exception as e:
            logging.error(f"Firestore update failed ({table}/{record_id}): {e}")
            raise RemoteDatabaseError(f"update {table}/{record_id}: {e}", target=self.name) from e

    def delete(self, table, record_id, tenant_id):
        try:
            doc_ref = self.collection(table).document(record_id)
            if self._owned(doc_ref.get(), tenant_id):
                doc_ref.delete()
        except Exception as e:
            logging.error(f"Firestore delete failed ({table}/{record_id}): {e}")
            raise RemoteDatabaseError(f"delete {table}: {e}", target=self.name) from e

    def get(self, table, record_id, tenant_id):
        try:
            snapshot = self.collection(table).document(record_id).get()
        except Exception as e:
            raise RemoteDatabaseError(f"read {table}: {e}", target=self.name) from e
        return self._from_snapshot(snapshot) if self._owned(snapshot, tenant_id) else None

    def select(self, table, tenant_id, since_date=None, updated_after=None):
        try:
            query = self.collection(table).where('tenantId', '==', tenant_id)
            if since_date:
                query = query.where('date', '>=', since_date)
            elif updated_after:
                query = query.where('updatedAt', '>', DateTimeUtils.parse_iso_datetime(updated_after))
            rows = [self._from_snapshot(doc) for doc in query.stream()]
        except Exception as e:
            logging.error(f"Firestore select failed ({table}, tenant: {tenant_id}): {e}")
            raise RemoteDatabaseError(f"read {table}: {e}", target=self.name) from e

        # Two range filters on different fields need a composite index; filter the second one here.
        if since_date and updated_after:
            watermark = DateTimeUtils.to_timestamp_ms(updated_after)
            rows = [r for r in rows
                    if r.get('updated_at') and DateTimeUtils.to_timestamp_ms(r['updated_at']) > watermark]
        return rows

    def count(self, table, tenant_id=None):
        try:
            query = self.collection(table)
            if tenant_id:
                query = query.where('tenantId', '==', tenant_id)
            result = query.count().get()
            return int(result[0][0].value)
        except Exception as e:
            logging.error(f"Firestore count failed ({table}, tenant: {tenant_id}): {e}")
            raise RemoteDatabaseError(f"count {table}: {e}", target=self.name) from e

    def list_ids(self, table, tenant_id):
        try:
            query = self.collection(table).where('tenantId', '==', tenant_id).select([])
            return {doc.id for doc in query.stream()}
        except Exception as e:
            raise RemoteDatabaseError(f"read {table}: {e}", target=self.name) from e

    def upsert_many(self, table, rows, tenant_id):
        rows = list(rows)
        try:
            for start in range(0, len(rows), BATCH_LIMIT):
                batch = self.db.batch()
                for row in rows[start:start + BATCH_LIMIT]:
                    batch.set(self.collection(table).document(row['id']), self._to_document(row, tenant_id))
                batch.commit()
        except Exception as e:
            logging.error(f"Firestore batch write failed ({table}, tenant: {tenant_id}): {e}")
            raise RemoteDatabaseError(f"upsert {table}: {e}", target=self.name) from e
        logging.info(f"Synced {len(rows)} {table} records to Firebase (tenant: {tenant_id})")
        return len(rows)

    def list_tenant_ids(self) -> List[str]:
        """Tenants known to Firestore, taken from the animals collection."""
        try:
            docs = self.collection('animals').select(['tenantId']).stream()
            return sorted({(doc.to_dict() or {}).get('tenantId') for doc in docs} - {None})
        except Exception as e:
            raise RemoteDatabaseError(f"read animals: {e}", target=self.name) from e
