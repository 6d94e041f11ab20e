"""RashTrackr Offline - offline cache controller for the RashTrackr web client.

Serves the client's requests cache-first from one versioned cache store,
falls back to the network and an offline page, and replays reports that were
submitted while offline once connectivity returns.
"""

from rashtrackr_offline.cache.storage import CacheStorage, CacheStore
from rashtrackr_offline.core.controller import ControllerState, OfflineCacheController
from rashtrackr_offline.core.errors import (
    InstallError,
    NetworkUnavailable,
    NonCacheableResponse,
    OfflineCacheError,
    ReconciliationItemFailure,
    UnexpectedFailure,
)
from rashtrackr_offline.database.models import DeferredWrite, Request, Response, SyncResult
from rashtrackr_offline.sync.queue import InMemoryWriteQueue, SQLiteWriteQueue, WriteQueue
from rashtrackr_offline.throttling.manager import SyncThrottle, SyncThrottleState

__version__ = "0.1.0"

__all__ = [
    "OfflineCacheController",
    "ControllerState",
    "CacheStorage",
    "CacheStore",
    "Request",
    "Response",
    "DeferredWrite",
    "SyncResult",
    "WriteQueue",
    "InMemoryWriteQueue",
    "SQLiteWriteQueue",
    "SyncThrottle",
    "SyncThrottleState",
    "OfflineCacheError",
    "NetworkUnavailable",
    "NonCacheableResponse",
    "UnexpectedFailure",
    "ReconciliationItemFailure",
    "InstallError",
]
