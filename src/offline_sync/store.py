"""
Durable Store - persisted key/value map

Backs both the snapshot cache and the pending-write queue. Every operation is
atomic per key; there are no cross-key transactions.

Backends:
- MemoryStore: process-local, for tests and ephemeral sessions
- JsonFileStore: one JSON file per key, crash-safe via temp file + rename
"""

import copy
import hashlib
import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StoreError

logger = logging.getLogger(__name__)


class DurableStore(ABC):
    """Contract for the key/value store used by the engine."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or default when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Persist a JSON-serializable value under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with prefix."""


class MemoryStore(DurableStore):
    """
    In-memory store.

    Values are deep-copied in and out so callers never share mutable state
    with the store, matching the semantics of a serialized backend.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        # Reject values a file backend could not persist
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value for '{key}' is not JSON-serializable: {e}") from e
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileStore(DurableStore):
    """
    File-backed store, one JSON document per key.

    Usage:
        store = JsonFileStore(Path("~/.lidacacau/sync").expanduser())

        store.set("sync:queue", [])
        queue = store.get("sync:queue", [])
    """

    def __init__(self, root: Path):
        """
        Initialize file store.

        Args:
            root: Directory holding one file per key (created if missing)
        """
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        """Map a key to a stable, filesystem-safe file name."""
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", key)[:64]
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
        return self.root / f"{safe}.{digest}.json"

    def _read_document(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable store file %s: %s", path, e)
            return None

        if not isinstance(document, dict) or "key" not in document:
            logger.warning("Ignoring malformed store file %s", path)
            return None
        return document

    def get(self, key: str, default: Any = None) -> Any:
        document = self._read_document(self._path_for(key))
        if document is None:
            return default
        return document.get("value", default)

    def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        try:
            content = json.dumps({"key": key, "value": value}, indent=2)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value for '{key}' is not JSON-serializable: {e}") from e

        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except OSError as e:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise StoreError(f"Failed to persist '{key}': {e}") from e

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                self._path_for(key).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StoreError(f"Failed to delete '{key}': {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        found = []
        for path in self.root.glob("*.json"):
            if path.name.startswith(".tmp-"):
                continue
            document = self._read_document(path)
            if document is not None and document["key"].startswith(prefix):
                found.append(document["key"])
        return sorted(found)
