"""
Error taxonomy for the offline sync engine.

Transport failures are raised by RemoteGateway as GatewayError subclasses and
absorbed by the cache layer and the sync coordinator. Everything else
(configuration, storage) propagates to the caller.
"""

from typing import Any, Optional


class OfflineSyncError(Exception):
    """Base class for all engine errors."""


class ConfigError(OfflineSyncError):
    """Invalid or unreadable configuration."""


class StoreError(OfflineSyncError):
    """The durable store could not persist or load a value."""


# ==================== Transport ====================


class GatewayError(OfflineSyncError):
    """A remote call did not produce a 2xx response."""

    kind = "gateway"

    @property
    def retryable(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": str(self)}


class GatewayTimeout(GatewayError):
    """The call exceeded the per-call timeout."""

    kind = "timeout"


class GatewayNetworkError(GatewayError):
    """No response reached the client (DNS, refused connection, reset...)."""

    kind = "network"


class ServerRejected(GatewayError):
    """A response was received but its status was not 2xx."""

    kind = "server_rejected"

    # Client-side statuses that are still worth retrying
    RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})

    def __init__(self, status: int, body: Any = None, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"HTTP {status}")

    @property
    def retryable(self) -> bool:
        return self.status >= 500 or self.status in self.RETRYABLE_CLIENT_STATUSES

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status"] = self.status
        return data


# ==================== Reads ====================


class CacheUnavailableError(OfflineSyncError):
    """Remote read failed and no snapshot exists for the key."""

    def __init__(self, key: str, cause: GatewayError):
        self.key = key
        self.cause = cause
        super().__init__(f"No data available for '{key}': {cause}")
