"""
Services module for Goods Tracker Edge.

Provides the offline queue, read cache, connectivity tracking, sync and
the coordinator the UI layer talks to.
"""

from .local_db import (
    LocalDatabase,
    LocalStoreError,
    StorageUnavailable,
    QueueWriteFailure,
    StorageReadFailure,
)
from .read_cache import ReadCache
from .offline_mode import ConnectivityObserver, ConnectionMode
from .api_client import SupabaseStore, RemoteStoreError
from .sync_manager import SyncManager
from .coordinator import SyncCoordinator, InvalidSubmission, ShadowReferenceError

__all__ = [
    'LocalDatabase',
    'LocalStoreError',
    'StorageUnavailable',
    'QueueWriteFailure',
    'StorageReadFailure',
    'ReadCache',
    'ConnectivityObserver',
    'ConnectionMode',
    'SupabaseStore',
    'RemoteStoreError',
    'SyncManager',
    'SyncCoordinator',
    'InvalidSubmission',
    'ShadowReferenceError',
]
