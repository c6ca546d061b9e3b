"""
Pending Queue - Offline write support

Durable FIFO of writes that could not be delivered, stored as a single list
under one store key so the queue survives process restarts.

Features:
- Client-generated operation ids (also used as idempotency keys)
- Fresh read from the store on every list() (no in-memory source of truth)
- Retry counting with a terminal dead-letter list retained for diagnostics
- Requeue of dead-lettered operations
"""

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, asdict, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .payloads import WritePayload
from .store import DurableStore

logger = logging.getLogger(__name__)

QUEUE_KEY = "sync:queue"
DEAD_LETTER_KEY = "sync:dead_letter"


def _now_iso(clock: Callable[[], datetime]) -> str:
    return clock().isoformat(timespec="microseconds")


@dataclass
class PendingOperation:
    """A queued write waiting to be synced."""

    id: str
    kind: str
    method: str
    endpoint: str
    payload: Dict[str, Any]
    created_at: str
    retry_count: int = 0
    max_retries: int = 5
    last_attempt: Optional[str] = None
    last_error: Optional[str] = None
    dead_lettered_at: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingOperation":
        # Fields written by other versions are ignored
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class PendingQueue:
    """
    Persistent queue for undelivered writes.

    Usage:
        queue = PendingQueue(store, max_retries=5)

        op_id = queue.enqueue(PriceSubmissionPayload("Cargill", "Uruara", 32.5))

        for op in queue.list():
            if deliver(op):
                queue.remove(op.id)
            else:
                queue.mark_retried(op.id, "Connection timeout")
    """

    def __init__(
        self,
        store: DurableStore,
        max_retries: int = 5,
        dead_letter_limit: int = 1000,
        clock: Optional[Callable[[], datetime]] = None,
        on_discard: Optional[Callable[[List[PendingOperation]], None]] = None,
    ):
        """
        Initialize pending queue.

        Args:
            store: Durable store holding the queue and dead-letter keys
            max_retries: Failed attempts before an operation is dead-lettered
            dead_letter_limit: Most recent dead letters to retain
            clock: Source of timestamps (UTC)
            on_discard: Called with dead letters trimmed past dead_letter_limit
        """
        self.store = store
        self.max_retries = max_retries
        self.dead_letter_limit = dead_letter_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.on_discard = on_discard

        # Serializes read-modify-write of the queue keys
        self._lock = threading.RLock()

    # ==================== Storage ====================

    def _load(self, key: str) -> List[PendingOperation]:
        raw = self.store.get(key, [])
        return [PendingOperation.from_dict(item) for item in raw or []]

    def _save(self, key: str, operations: List[PendingOperation]) -> None:
        self.store.set(key, [op.to_dict() for op in operations])

    def _append_dead_letter(self, operation: PendingOperation) -> None:
        dead = self._load(DEAD_LETTER_KEY)
        dead.append(operation)

        dropped: List[PendingOperation] = []
        if len(dead) > self.dead_letter_limit:
            dropped = dead[:-self.dead_letter_limit]
            dead = dead[-self.dead_letter_limit:]
            logger.warning(
                "Dead-letter list over limit, discarding %d oldest entries: %s",
                len(dropped), ", ".join(op.id for op in dropped),
            )

        self._save(DEAD_LETTER_KEY, dead)

        if dropped and self.on_discard is not None:
            try:
                self.on_discard(dropped)
            except Exception:
                logger.exception("on_discard hook failed for %d operations", len(dropped))

    # ==================== Queue Operations ====================

    def enqueue(self, payload: WritePayload, operation_id: Optional[str] = None) -> str:
        """
        Add a write to the queue.

        Args:
            payload: Anything exposing endpoint() and serialize()
            operation_id: Id already used for a delivery attempt; generated if absent

        Returns:
            The operation id
        """
        operation = PendingOperation(
            id=operation_id or uuid.uuid4().hex,
            kind=getattr(payload, "kind", "json"),
            method=getattr(payload, "method", "POST"),
            endpoint=payload.endpoint(),
            payload=payload.serialize(),
            created_at=_now_iso(self._clock),
            max_retries=self.max_retries,
        )

        with self._lock:
            operations = self._load(QUEUE_KEY)
            if any(op.id == operation.id for op in operations):
                raise ValueError(f"Operation id already queued: {operation.id}")
            operations.append(operation)
            self._save(QUEUE_KEY, operations)

        logger.info("Queued %s operation %s for %s", operation.kind, operation.id, operation.endpoint)
        return operation.id

    def list(self) -> List[PendingOperation]:
        """
        Snapshot of the active queue, oldest first.

        Returns:
            Independent copies; later mutations do not affect them
        """
        operations = self._load(QUEUE_KEY)
        # Stable sort keeps insertion order for equal timestamps
        return sorted(operations, key=lambda op: op.created_at)

    def get(self, operation_id: str) -> Optional[PendingOperation]:
        for op in self._load(QUEUE_KEY):
            if op.id == operation_id:
                return op
        return None

    def remove(self, operation_id: str) -> bool:
        """Remove an operation. Returns False if it was not queued."""
        with self._lock:
            operations = self._load(QUEUE_KEY)
            remaining = [op for op in operations if op.id != operation_id]
            if len(remaining) == len(operations):
                return False
            self._save(QUEUE_KEY, remaining)
        return True

    def mark_retried(self, operation_id: str, error: Optional[str] = None) -> bool:
        """
        Record a failed delivery attempt.

        Args:
            operation_id: Operation that failed
            error: Description of the failure

        Returns:
            True if this attempt exhausted the retry budget and the operation
            was moved to the dead-letter list
        """
        with self._lock:
            operations = self._load(QUEUE_KEY)
            operation = next((op for op in operations if op.id == operation_id), None)
            if operation is None:
                return False

            operation.retry_count += 1
            operation.last_attempt = _now_iso(self._clock)
            operation.last_error = error

            if not operation.exhausted:
                self._save(QUEUE_KEY, operations)
                return False

            operation.dead_lettered_at = operation.last_attempt
            self._append_dead_letter(operation)
            self._save(QUEUE_KEY, [op for op in operations if op.id != operation_id])

        logger.warning(
            "Operation %s dead-lettered after %d attempts: %s",
            operation_id, operation.retry_count, error,
        )
        return True

    def dead_letter(self, operation_id: str, error: Optional[str] = None) -> bool:
        """Move an operation straight to the dead-letter list."""
        with self._lock:
            operations = self._load(QUEUE_KEY)
            operation = next((op for op in operations if op.id == operation_id), None)
            if operation is None:
                return False

            operation.retry_count += 1
            operation.last_attempt = _now_iso(self._clock)
            operation.last_error = error
            operation.dead_lettered_at = operation.last_attempt

            self._append_dead_letter(operation)
            self._save(QUEUE_KEY, [op for op in operations if op.id != operation_id])

        logger.warning("Operation %s dead-lettered without retry: %s", operation_id, error)
        return True

    # ==================== Inspection ====================

    def count(self) -> int:
        return len(self._load(QUEUE_KEY))

    def dead_letters(self) -> List[PendingOperation]:
        return self._load(DEAD_LETTER_KEY)

    def get_queue_stats(self) -> Dict[str, Any]:
        """Get queue statistics."""
        pending = self.list()
        dead = self.dead_letters()

        by_kind: Dict[str, int] = {}
        for op in pending:
            by_kind[op.kind] = by_kind.get(op.kind, 0) + 1

        return {
            "total_pending": len(pending),
            "retrying": sum(1 for op in pending if op.retry_count > 0),
            "dead_lettered": len(dead),
            "by_kind": by_kind,
            "oldest_pending": pending[0].created_at if pending else None,
        }

    # ==================== Maintenance ====================

    def requeue_dead_letters(self) -> int:
        """Move dead-lettered operations back to the active queue with a fresh budget."""
        with self._lock:
            dead = self._load(DEAD_LETTER_KEY)
            if not dead:
                return 0

            operations = self._load(QUEUE_KEY)
            active_ids = {op.id for op in operations}
            for op in dead:
                if op.id in active_ids:
                    continue
                revived = copy.copy(op)
                revived.retry_count = 0
                revived.max_retries = self.max_retries
                revived.last_attempt = None
                revived.last_error = None
                revived.dead_lettered_at = None
                operations.append(revived)

            self._save(QUEUE_KEY, operations)
            self.store.delete(DEAD_LETTER_KEY)

        logger.info("Requeued %d dead-lettered operations", len(dead))
        return len(dead)

    def clear(self) -> None:
        """Drop every active operation (use with caution)."""
        with self._lock:
            self._save(QUEUE_KEY, [])

    def clear_dead_letters(self) -> int:
        with self._lock:
            count = len(self._load(DEAD_LETTER_KEY))
            self.store.delete(DEAD_LETTER_KEY)
        return count
