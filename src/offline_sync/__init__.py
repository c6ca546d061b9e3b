# Offline-first sync engine
# Read-through caching, durable write queueing, and background drain

import logging

from .config import SyncConfig
from .errors import (
    OfflineSyncError,
    ConfigError,
    StoreError,
    GatewayError,
    GatewayTimeout,
    GatewayNetworkError,
    ServerRejected,
    CacheUnavailableError,
)
from .gateway import RemoteGateway, GatewayResponse
from .store import DurableStore, MemoryStore, JsonFileStore
from .payloads import WritePayload, JsonPayload, PriceSubmissionPayload
from .cache import CacheLayer, CacheEntry, CachedResult
from .queue import PendingQueue, PendingOperation
from .coordinator import SyncCoordinator, WriteOutcome, DrainReport
from .scheduler import BackgroundSync

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.3.0"

__all__ = [
    "SyncConfig",
    "OfflineSyncError",
    "ConfigError",
    "StoreError",
    "GatewayError",
    "GatewayTimeout",
    "GatewayNetworkError",
    "ServerRejected",
    "CacheUnavailableError",
    "RemoteGateway",
    "GatewayResponse",
    "DurableStore",
    "MemoryStore",
    "JsonFileStore",
    "WritePayload",
    "JsonPayload",
    "PriceSubmissionPayload",
    "CacheLayer",
    "CacheEntry",
    "CachedResult",
    "PendingQueue",
    "PendingOperation",
    "SyncCoordinator",
    "WriteOutcome",
    "DrainReport",
    "BackgroundSync",
]
