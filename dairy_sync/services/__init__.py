# dairy_sync/services/__init__.py
from .remote_database import RemoteDatabase, FIRESTORE_COLLECTIONS, firestore_collection_name
from .telemetry import TelemetrySink

__all__ = ['RemoteDatabase', 'FIRESTORE_COLLECTIONS', 'firestore_collection_name', 'TelemetrySink']
