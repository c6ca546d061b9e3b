"""
Cache Layer - read-through cache over the durable store

Every read goes to the remote fetcher first. A successful fetch overwrites the
stored snapshot; a failed fetch falls back to the last snapshot, tagged stale.
Only when no snapshot exists does the read fail with CacheUnavailableError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .errors import CacheUnavailableError, GatewayError
from .store import DurableStore

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache:"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    """Last successfully fetched value for a key."""

    data: Any
    fetched_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "fetched_at": self.fetched_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(data=data.get("data"), fetched_at=data.get("fetched_at", ""))


@dataclass
class CachedResult:
    """Value returned by a read, with its provenance."""

    data: Any
    fetched_at: str
    stale: bool = False
    # Stale and older than the layer's TTL
    expired: bool = False

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        fetched = datetime.fromisoformat(self.fetched_at)
        return max(0.0, (now - fetched).total_seconds())

    def is_expired(self, ttl_seconds: float, now: Optional[datetime] = None) -> bool:
        """True when the data is older than ttl_seconds."""
        return self.age_seconds(now) > ttl_seconds


class CacheLayer:
    """
    Read-through cache.

    Usage:
        cache = CacheLayer(store)

        result = cache.read("prices", gateway.fetcher("/api/cacau-precos"))
        if result.stale:
            show_offline_badge(result.fetched_at)
    """

    def __init__(
        self,
        store: DurableStore,
        clock: Callable[[], datetime] = utc_now,
        ttl_seconds: Optional[float] = None,
    ):
        """
        Initialize cache layer.

        Args:
            store: Durable store holding the snapshots
            clock: Source of timestamps (UTC)
            ttl_seconds: Age past which a stale snapshot is flagged expired
        """
        self.store = store
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    def _storage_key(self, key: str) -> str:
        return f"{CACHE_PREFIX}{key}"

    def read(self, key: str, fetcher: Callable[[], Any]) -> CachedResult:
        """
        Fetch fresh data, falling back to the stored snapshot.

        Args:
            key: Logical collection name (e.g. "prices")
            fetcher: Zero-argument callable returning data or raising GatewayError

        Returns:
            CachedResult, stale=True when served from the snapshot and
            expired=True when that snapshot is also older than ttl_seconds

        Raises:
            CacheUnavailableError: fetch failed and nothing is cached
        """
        try:
            data = fetcher()
        except GatewayError as e:
            entry = self.peek(key)
            if entry is None:
                logger.info("Read of '%s' failed with no cached snapshot: %s", key, e)
                raise CacheUnavailableError(key, e) from e
            logger.info("Serving stale '%s' from %s: %s", key, entry.fetched_at, e)
            result = CachedResult(data=entry.data, fetched_at=entry.fetched_at, stale=True)
            if self.ttl_seconds is not None:
                result.expired = result.is_expired(self.ttl_seconds, now=self._clock())
            return result

        entry = CacheEntry(data=data, fetched_at=self._clock().isoformat(timespec="microseconds"))
        self.store.set(self._storage_key(key), entry.to_dict())
        return CachedResult(data=data, fetched_at=entry.fetched_at, stale=False)

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the stored snapshot without any remote call."""
        raw = self.store.get(self._storage_key(key))
        if not isinstance(raw, dict):
            return None
        return CacheEntry.from_dict(raw)

    def invalidate(self, key: str) -> None:
        self.store.delete(self._storage_key(key))
