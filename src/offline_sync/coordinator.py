"""
Sync Coordinator - offline-first reads, writes and queue drain

The single entry point application code talks to:
- read():  remote fetch with fallback to the cached snapshot
- write(): one delivery attempt, durably queued on any transport failure
- drain(): one pass over the queued writes, at most one pass at a time

Writes never fail from the caller's point of view. Undeliverable writes end up
in the dead-letter list and are surfaced through dead_letter_count(), the
on_dead_letter hook, and the sync status record.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .cache import CacheLayer, CachedResult
from .config import SyncConfig
from .errors import ConfigError, GatewayError, ServerRejected
from .gateway import RemoteGateway
from .payloads import WritePayload
from .queue import PendingOperation, PendingQueue
from .store import DurableStore, JsonFileStore

logger = logging.getLogger(__name__)

STATUS_KEY = "sync:status"


class WriteOutcome(Enum):
    """Result of a write as seen by the caller."""
    SYNCED = "synced"
    QUEUED_FOR_SYNC = "queued_for_sync"


@dataclass
class DrainReport:
    """Summary of one drain pass."""

    synced: int = 0
    failed: int = 0
    dead_lettered: int = 0
    skipped: bool = False
    duration_ms: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncCoordinator:
    """
    Orchestrates the cache layer, pending queue and remote gateway.

    Usage:
        config = SyncConfig.from_env()
        coordinator = SyncCoordinator.from_config(config, store, token_provider=auth.token)

        prices = coordinator.read("prices", "/api/cacau-precos")
        outcome = coordinator.write(PriceSubmissionPayload("Cargill", "Uruara", 32.5))

        # On a timer or when connectivity returns
        report = coordinator.drain()
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        cache: CacheLayer,
        queue: PendingQueue,
        config: Optional[SyncConfig] = None,
        on_dead_letter: Optional[Callable[[PendingOperation], None]] = None,
    ):
        """
        Initialize coordinator.

        Args:
            gateway: Remote gateway for all network calls
            cache: Read-through cache
            queue: Durable pending-write queue (shares the cache's store)
            config: Policy settings
            on_dead_letter: Called with each operation that reaches the dead-letter list
        """
        self.gateway = gateway
        self.cache = cache
        self.queue = queue
        self.config = config or gateway.config
        self.on_dead_letter = on_dead_letter

        self._drain_lock = threading.Lock()
        self._status_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        store: Optional[DurableStore] = None,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        on_discard: Optional[Callable[[List[PendingOperation]], None]] = None,
        **kwargs: Any,
    ) -> "SyncCoordinator":
        """
        Build a coordinator and its collaborators over one store.

        Args:
            config: Policy settings
            store: Shared store; a JsonFileStore at config.store_path if omitted
            token_provider: Supplies the bearer token per call
            on_discard: Called with dead letters trimmed past config.dead_letter_limit
            **kwargs: Passed to the constructor (e.g. on_dead_letter)

        Raises:
            ConfigError: no store given and config.store_path is unset
        """
        if store is None:
            if not config.store_path:
                raise ConfigError("A store or config.store_path is required")
            store = JsonFileStore(Path(config.store_path))

        gateway = RemoteGateway(config, token_provider=token_provider)
        cache = CacheLayer(store, ttl_seconds=config.cache_ttl_seconds)
        queue = PendingQueue(
            store,
            max_retries=config.max_retries,
            dead_letter_limit=config.dead_letter_limit,
            on_discard=on_discard,
        )
        return cls(gateway, cache, queue, config=config, **kwargs)

    # ==================== Reads ====================

    def read(self, key: str, fetcher: Union[str, Callable[[], Any]]) -> CachedResult:
        """
        Read through the cache.

        Args:
            key: Cache key for the collection
            fetcher: Endpoint path to GET, or a zero-argument fetch callable

        Raises:
            CacheUnavailableError: remote failed and nothing is cached
        """
        if isinstance(fetcher, str):
            fetcher = self.gateway.fetcher(fetcher)
        return self.cache.read(key, fetcher)

    # ==================== Writes ====================

    def write(self, payload: WritePayload) -> WriteOutcome:
        """
        Deliver a write now, or queue it for the next drain.

        The operation id is generated before the first attempt and sent as the
        idempotency key, so a retry of a write the server already committed
        can be deduplicated remotely.
        """
        operation_id = uuid.uuid4().hex
        method = getattr(payload, "method", "POST")
        endpoint = payload.endpoint()

        try:
            self.gateway.call(method, endpoint, payload.serialize(), idempotency_key=operation_id)
        except GatewayError as e:
            logger.info("Write to %s failed (%s), queueing for sync", endpoint, e)
            self.queue.enqueue(payload, operation_id=operation_id)
            self._update_status(pending_changes=self.queue.count())
            return WriteOutcome.QUEUED_FOR_SYNC

        return WriteOutcome.SYNCED

    # ==================== Drain ====================

    def drain(self) -> DrainReport:
        """
        Attempt delivery of every queued write once.

        Returns immediately with an empty, skipped report when another drain is
        in progress. A failure on one operation never stops the others.
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress, skipping")
            return DrainReport(skipped=True)

        try:
            return self._drain_snapshot()
        finally:
            self._drain_lock.release()

    def _drain_snapshot(self) -> DrainReport:
        start_time = time.time()
        report = DrainReport()

        snapshot = self.queue.list()
        self._update_status(sync_in_progress=True)

        for operation in snapshot:
            try:
                self.gateway.call(
                    operation.method,
                    operation.endpoint,
                    operation.payload,
                    idempotency_key=operation.id,
                )
            except GatewayError as e:
                report.failed += 1
                if self._handle_failure(operation, e):
                    report.dead_lettered += 1
                continue

            self.queue.remove(operation.id)
            report.synced += 1

        report.duration_ms = (time.time() - start_time) * 1000

        if snapshot:
            logger.info(
                "Drain finished: %d synced, %d failed, %d dead-lettered",
                report.synced, report.failed, report.dead_lettered,
            )

        self._update_status(
            sync_in_progress=False,
            last_sync_at=datetime.now(timezone.utc).isoformat(),
            last_report=report.to_dict(),
            pending_changes=self.queue.count(),
            dead_lettered=len(self.queue.dead_letters()),
        )
        return report

    def _handle_failure(self, operation: PendingOperation, error: GatewayError) -> bool:
        """Record a failed attempt. Returns True if the operation was dead-lettered."""
        terminal = (
            self.config.fail_fast_on_client_error
            and isinstance(error, ServerRejected)
            and not error.retryable
        )
        if terminal:
            moved = self.queue.dead_letter(operation.id, str(error))
        else:
            moved = self.queue.mark_retried(operation.id, str(error))

        if moved and self.on_dead_letter is not None:
            dead = next((op for op in self.queue.dead_letters() if op.id == operation.id), operation)
            try:
                self.on_dead_letter(dead)
            except Exception:
                logger.exception("on_dead_letter hook failed for %s", operation.id)
        return moved

    # ==================== Status ====================

    def has_pending(self) -> bool:
        return self.pending_count() > 0

    def pending_count(self) -> int:
        return self.queue.count()

    def dead_letter_count(self) -> int:
        return len(self.queue.dead_letters())

    def dead_letters(self) -> List[PendingOperation]:
        return self.queue.dead_letters()

    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    def get_sync_status(self) -> Dict[str, Any]:
        """Get current sync status."""
        status = self.queue.store.get(STATUS_KEY) or {}
        return {
            "last_sync_at": status.get("last_sync_at"),
            "last_report": status.get("last_report"),
            "sync_in_progress": self.is_draining(),
            "pending_changes": self.pending_count(),
            "dead_lettered": self.dead_letter_count(),
        }

    def _update_status(self, **updates: Any) -> None:
        store = self.queue.store
        with self._status_lock:
            status = store.get(STATUS_KEY) or {}
            status.update(updates)
            store.set(STATUS_KEY, status)
