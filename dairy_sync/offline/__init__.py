# dairy_sync/offline/__init__.py
from .local_store import LocalStore
from .mutation_queue import MutationQueue
from .sync_engine import SyncEngine
from .gateway import RemoteGateway, CoordinatorGateway, HttpGateway
from .triggers import ConnectivityMonitor

__all__ = [
    'LocalStore', 'MutationQueue', 'SyncEngine',
    'RemoteGateway', 'CoordinatorGateway', 'HttpGateway',
    'ConnectivityMonitor'
]
