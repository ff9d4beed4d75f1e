# dairy_sync/offline/gateway.py
"""
Remote side of the sync engine. A gateway applies one queued mutation to the
system of record and fetches remote rows for the pull phase.

- CoordinatorGateway: in-process, hands mutations to the DualWriteCoordinator
- HttpGateway: a client device talking to the records API over HTTP
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from dairy_sync.core.errors import RemoteDatabaseError
from dairy_sync.models.sync import MutationOperation, QueuedMutation
from dairy_sync.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)


class RemoteGateway:
    """Interface used by SyncEngine. Implementations raise RemoteDatabaseError on failure."""

    def apply(self, mutation: QueuedMutation) -> Dict[str, Any]:
        raise NotImplementedError

    def fetch(self, table: str, tenant_id: str, since_date: Optional[str] = None,
              updated_after: Optional[int] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError


def _remote_payload(mutation: QueuedMutation) -> Dict[str, Any]:
    """Mutation data as the remote expects it: no tenant_id, updated_at from the local write time."""
    data = {k: v for k, v in mutation.data.items() if k != 'tenant_id'}
    data['updated_at'] = DateTimeUtils.ms_to_iso(mutation.timestamp)
    return data


class CoordinatorGateway(RemoteGateway):
    def __init__(self, coordinator):
        self.coordinator = coordinator

    def apply(self, mutation: QueuedMutation) -> Dict[str, Any]:
        data = _remote_payload(mutation)
        operation = MutationOperation(mutation.operation)

        if operation is MutationOperation.CREATE:
            data['id'] = mutation.record_id
            result = self.coordinator.create_record(mutation.table, data, mutation.tenant_id)
        elif operation is MutationOperation.UPDATE:
            data.pop('id', None)
            result = self.coordinator.update_record(mutation.table, mutation.record_id, data, mutation.tenant_id)
        else:
            result = self.coordinator.delete_record(mutation.table, mutation.record_id, mutation.tenant_id)

        if not result.success:
            raise RemoteDatabaseError('; '.join(result.errors) or 'Remote write failed')
        return result.to_dict()

    def fetch(self, table, tenant_id, since_date=None, updated_after=None):
        return self.coordinator.select(
            table, tenant_id, since_date=since_date, updated_after=updated_after
        )


class HttpGateway(RemoteGateway):
    """Replays mutations through the `/api/records` endpoints."""

    def __init__(self, base_url: str, access_token: Optional[str] = None,
                 timeout: float = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, tenant_id: str) -> Dict[str, str]:
        headers = {'X-Tenant-Id': tenant_id}
        if self.access_token:
            headers['Authorization'] = f'Bearer {self.access_token}'
        return headers

    def _request(self, method: str, path: str, tenant_id: str, **kwargs) -> Dict[str, Any]:
        url = f'{self.base_url}/api/records/{path}'
        try:
            resp = self.session.request(
                method, url, headers=self._headers(tenant_id), timeout=self.timeout, **kwargs
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise RemoteDatabaseError(f"{method} {url} failed: {e}", target='http') from e

        if not resp.content:
            return {}
        return resp.json()

    def apply(self, mutation: QueuedMutation) -> Dict[str, Any]:
        data = _remote_payload(mutation)
        operation = MutationOperation(mutation.operation)

        if operation is MutationOperation.CREATE:
            data['id'] = mutation.record_id
            return self._request('POST', mutation.table, mutation.tenant_id, json=data)
        if operation is MutationOperation.UPDATE:
            data.pop('id', None)
            return self._request('PUT', f'{mutation.table}/{mutation.record_id}',
                                 mutation.tenant_id, json=data)
        return self._request('DELETE', f'{mutation.table}/{mutation.record_id}', mutation.tenant_id)

    def fetch(self, table, tenant_id, since_date=None, updated_after=None):
        params = {}
        if since_date:
            params['since_date'] = since_date
        if updated_after:
            params['updated_after'] = DateTimeUtils.ms_to_iso(updated_after)
        body = self._request('GET', table, tenant_id, params=params)
        return body.get('records', [])
