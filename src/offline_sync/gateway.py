"""
Remote Gateway - single timed calls to the remote service

Executes one HTTP call per invocation and classifies the outcome. Performs no
retries and never touches local storage; retry decisions belong to the
SyncCoordinator.

Outcomes:
- 2xx                      -> GatewayResponse
- timeout or call deadline -> GatewayTimeout
- no response (DNS, reset) -> GatewayNetworkError
- non-2xx response         -> ServerRejected(status, body)
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from .config import SyncConfig
from .errors import GatewayError, GatewayNetworkError, GatewayTimeout, ServerRejected

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


@dataclass
class GatewayResponse:
    """A successful (2xx) response."""

    status: int
    data: Any = None


class RemoteGateway:
    """
    Thin HTTP client used for every engine call.

    Usage:
        gateway = RemoteGateway(config, token_provider=session.current_token)

        response = gateway.call("POST", "/api/cacau-precos", {"city": "Uruara"})
        prices = gateway.call("GET", "/api/cacau-precos").data
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the gateway.

        Args:
            config: Sync configuration (base URL, timeout, static api key)
            token_provider: Callable returning the current bearer token, or None
                for anonymous calls. Takes precedence over config.api_key.
            client: Pre-built httpx.Client (tests inject a MockTransport)
        """
        self.config = config or SyncConfig()
        self.token_provider = token_provider
        self._client = client or httpx.Client(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )

    def __enter__(self) -> "RemoteGateway":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _get_token(self) -> Optional[str]:
        if self.token_provider is not None:
            return self.token_provider()
        return self.config.api_key

    def _get_headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        """Get HTTP headers for a call."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
        }
        token = self._get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def call(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayResponse:
        """
        Execute a single call.

        Args:
            method: HTTP method (GET, POST, PATCH, ...)
            endpoint: Path relative to the configured base URL
            body: JSON-serializable request body
            idempotency_key: Sent as Idempotency-Key so the server can deduplicate retries

        Returns:
            GatewayResponse for any 2xx status

        Raises:
            GatewayTimeout, GatewayNetworkError, ServerRejected
        """
        method = method.upper()
        content = json.dumps(body).encode("utf-8") if body is not None else None
        timeout = self.config.timeout_seconds
        deadline = time.monotonic() + timeout

        try:
            with self._client.stream(
                method,
                endpoint,
                content=content,
                headers=self._get_headers(idempotency_key),
                timeout=timeout,
            ) as response:
                raw = self._read_until(response, deadline)
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out: %s", method, endpoint, e)
            raise GatewayTimeout(f"{method} {endpoint} timed out after {timeout}s") from e
        except httpx.TransportError as e:
            logger.debug("%s %s failed before a response: %s", method, endpoint, e)
            raise GatewayNetworkError(f"{method} {endpoint}: {e}") from e

        if raw is None:
            logger.debug("%s %s exceeded its %ss deadline", method, endpoint, timeout)
            raise GatewayTimeout(f"{method} {endpoint} timed out after {timeout}s")

        data = _decode_body(raw, response.encoding)

        if not response.is_success:
            logger.debug("%s %s rejected with %s", method, endpoint, response.status_code)
            raise ServerRejected(
                response.status_code,
                data,
                f"{method} {endpoint} rejected: HTTP {response.status_code} {response.reason_phrase}",
            )

        logger.debug("%s %s -> %s", method, endpoint, response.status_code)
        return GatewayResponse(status=response.status_code, data=data)

    def _read_until(self, response: httpx.Response, deadline: float) -> Optional[bytes]:
        """
        Read the whole body, giving up once the call deadline passes.

        The client timeout bounds each socket read; this bounds the call as a
        whole, so a server trickling bytes cannot hold it open.

        Returns:
            The body, or None if the deadline passed first
        """
        if time.monotonic() > deadline:
            return None

        chunks = []
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            if time.monotonic() > deadline:
                return None
        return b"".join(chunks)

    def fetcher(self, endpoint: str) -> Callable[[], Any]:
        """Build a zero-argument GET fetcher for CacheLayer.read."""

        def fetch() -> Any:
            return self.call("GET", endpoint).data

        return fetch


def _decode_body(raw: bytes, encoding: Optional[str]) -> Any:
    if not raw:
        return None
    text = raw.decode(encoding or "utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


__all__ = ["RemoteGateway", "GatewayResponse", "GatewayError", "TokenProvider"]
