"""HTTP client for the Vapi API.

Every call goes through one throttle (a fixed minimum spacing
between requests) and one retry policy (exponential backoff on
429 and transport failures). The client knows nothing about
resource types; callers hand it methods, paths and bodies.
"""

import asyncio
import json
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from vapi_gitops.config.models import ApiConfig
from vapi_gitops.errors import ApiError, RateLimitedError, TransportError
from vapi_gitops.utils.retry import retry_rate_limited


@dataclass
class ClientStats:
    """Counters for one client lifetime."""

    requests: int = 0
    retries: int = 0
    backoff_waits: list[float] = field(default_factory=list)


def parse_api_message(body: str) -> str:
    """Extract the platform's error message, falling back to the raw body."""
    try:
        parsed = json.loads(body)
    except ValueError:
        return body

    if isinstance(parsed, dict):
        message = parsed.get("message")
        if isinstance(message, str):
            return message
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
    return body


class VapiClient:
    """
    Throttled, retrying client for the Vapi REST API.

    Use as an async context manager, or call close() when done.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        config: ApiConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.config = config
        self.stats = ClientStats()
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()
        self._last_request_at: float | None = None

    async def __aenter__(self) -> "VapiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created underlying httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def post(self, path: str, body: Mapping[str, Any]) -> dict[str, Any]:
        """Create a resource; returns the parsed response body."""
        return await self.execute("POST", path, body) or {}

    async def patch(self, path: str, body: Mapping[str, Any]) -> dict[str, Any]:
        """Update a resource; returns the parsed response body."""
        return await self.execute("PATCH", path, body) or {}

    async def delete(self, path: str) -> None:
        """Delete a resource."""
        await self.execute("DELETE", path)

    async def execute(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Issue one API call with throttling and retry.

        Raises:
            ApiError: Non-2xx response, or 429 after all retries.
            TransportError: Network failure after all retries.
        """
        send = retry_rate_limited(
            self.config.max_retries,
            self.config.initial_backoff_seconds,
            self._record_backoff,
        )(self._send)

        try:
            return await send(method, path, body)
        except RateLimitedError as e:
            raise ApiError(method, path, 429, "max retries exceeded", e.raw_body) from e
        except httpx.TransportError as e:
            raise TransportError(method, path, str(e) or type(e).__name__) from e

    async def _send(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None,
    ) -> dict[str, Any] | None:
        async with self._lock:
            await self._throttle()
            self.stats.requests += 1
            logger.debug("{} {}", method, path)
            if body is None:
                response = await self.client.request(method, path)
            else:
                response = await self.client.request(method, path, json=dict(body))

        if response.status_code == 429:
            raise RateLimitedError(method, path, response.text)

        if not response.is_success:
            raise ApiError(
                method,
                path,
                response.status_code,
                parse_api_message(response.text),
                response.text,
            )

        if method == "DELETE":
            return None

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(
                method, path, response.status_code, "Invalid JSON response", response.text
            ) from e

        return data if isinstance(data, dict) else {"data": data}

    async def _throttle(self) -> None:
        """Keep at least request_delay_seconds between request starts."""
        delay = self.config.request_delay_seconds
        if self._last_request_at is not None and delay > 0:
            elapsed = time.monotonic() - self._last_request_at
            if elapsed < delay:
                await asyncio.sleep(delay - elapsed)
        self._last_request_at = time.monotonic()

    def _record_backoff(self, details: Mapping[str, Any]) -> None:
        self.stats.retries += 1
        self.stats.backoff_waits.append(float(details["wait"]))
