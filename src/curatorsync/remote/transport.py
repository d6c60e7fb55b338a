"""httpx async transport wrapper with retry, backoff, and ``Retry-After`` handling."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

import httpx

_LOG = logging.getLogger(__name__)

# Status codes considered transient and eligible for automatic retry.
RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

# POST is only replayed when the request carries an idempotency key.
_IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})
IDEMPOTENCY_HEADER = "Idempotency-Key"

Sleep = Callable[[float], Awaitable[None]]


class RetryingTransport(httpx.AsyncBaseTransport):
    """Wraps an httpx async transport with automatic retry on transient failures.

    - Retry with exponential backoff + jitter (up to *max_retries* retries)
    - Retry on 429 / 502 / 503 / 504, honouring ``Retry-After``
    - Retry on transport-level errors (connection reset, timeout, etc.)

    Non-idempotent requests are retried only when they carry an
    ``Idempotency-Key`` header.
    """

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = 3,
        max_backoff: float = 4.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._max_retries = max_retries
        self._max_backoff = max_backoff
        self._sleep = sleep

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        retries = self._max_retries if self._is_replayable(request) else 0

        for attempt in range(retries + 1):
            try:
                response = await self._transport.handle_async_request(request)
            except httpx.TransportError as exc:
                if attempt >= retries:
                    raise
                _LOG.warning("%s %s failed: %s", request.method, request.url, exc)
                await self._sleep_backoff(attempt)
                continue

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < retries:
                retry_after = self._parse_retry_after(response)
                await response.aclose()
                if retry_after > 0:
                    await self._sleep(retry_after)
                await self._sleep_backoff(attempt)
                continue

            return response

        raise httpx.TransportError("Request failed after retries")  # pragma: no cover

    async def aclose(self) -> None:
        await self._transport.aclose()

    @staticmethod
    def _is_replayable(request: httpx.Request) -> bool:
        return request.method in _IDEMPOTENT_METHODS or IDEMPOTENCY_HEADER in request.headers

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> float:
        raw = response.headers.get("Retry-After")
        if raw is None:
            return 0.0
        try:
            return max(0.0, float(raw))
        except ValueError:
            return 0.0

    async def _sleep_backoff(self, attempt: int) -> None:
        seconds = min(self._max_backoff, float(2**attempt)) + random.uniform(0.0, 0.25)
        _LOG.warning("Retrying remote request (attempt %d)", attempt + 1)
        await self._sleep(seconds)
