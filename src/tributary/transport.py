"""HTTP transport used to open streaming responses."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from tributary.exceptions import (
    ProviderOverloadedError,
    ProviderRequestError,
    RateLimitedError,
    RequestTooLargeError,
)

logger = logging.getLogger(__name__)

_RATE_LIMIT_PREFIXES = ("x-ratelimit-", "anthropic-ratelimit-")


class Transport(Protocol):
    """Anything that can open a streaming HTTP response.

    The returned object must expose ``status_code``, ``headers``,
    ``aiter_lines()``, ``aread()`` and ``aclose()`` the way
    :class:`httpx.Response` does.
    """

    async def send(
        self, method: str, url: str, headers: dict[str, str], json: Any,
    ) -> Any: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """Transport backed by :class:`httpx.AsyncClient`.

    Args:
        client: Client to use.  When omitted one is created and owned
            by the transport.
        timeout: Read timeout in seconds for owned clients.
    """

    def __init__(
        self, client: httpx.AsyncClient | None = None, timeout: float = 600.0,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self, method: str, url: str, headers: dict[str, str], json: Any,
    ) -> httpx.Response:
        request = self.client.build_request(method, url, headers=headers, json=json)
        logger.debug(f"{method} {url}")
        return await self.client.send(request, stream=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def _retry_after(headers: Any) -> float | None:
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _rate_limits(headers: Any) -> dict[str, str]:
    limits: dict[str, str] = {}
    for key, value in headers.items():
        key = key.lower()
        for prefix in _RATE_LIMIT_PREFIXES:
            if key.startswith(prefix):
                limits[key[len(prefix):]] = value
    return limits


async def raise_for_status(provider: str, response: Any) -> None:
    """Map an unsuccessful response to the matching exception.

    The response body is read and the response closed before raising.
    """
    status = response.status_code
    if status < 400:
        return
    try:
        body = (await response.aread()).decode("utf-8", errors="replace")
    finally:
        await response.aclose()
    logger.error(f"{provider} returned HTTP {status}: {body[:500]}")
    if status == 429:
        raise RateLimitedError(
            provider,
            retry_after=_retry_after(response.headers),
            limits=_rate_limits(response.headers),
        )
    if status == 529:
        raise ProviderOverloadedError(provider)
    if status == 413:
        raise RequestTooLargeError(provider)
    raise ProviderRequestError(provider, status, body)
