"""Client for the remote restaurant API.

Endpoints:

- ``GET {api_base}/restaurants``: array of restaurant records
- ``POST {api_base}/restaurants``: create; the response must carry ``id``
"""

from __future__ import annotations

import logging
import uuid
from types import TracebackType
from typing import Any

import httpx
from pydantic import ValidationError

from curatorsync.contracts.exceptions import NetworkError, RemoteResponseError
from curatorsync.contracts.remote import RemoteRestaurant, RemoteRestaurantPayload
from curatorsync.remote.transport import IDEMPOTENCY_HEADER, RetryingTransport

logger = logging.getLogger(__name__)

_IDEMPOTENCY_NAMESPACE = uuid.UUID("6f1c2f8e-93a4-4e0b-9a5d-4c1e6b3a7d21")


def idempotency_key(local_id: int, timestamp: str | None) -> str:
    """Stable key for pushing one version of a local restaurant.

    The same local row and timestamp always yield the same key, so a POST
    replayed after a timeout is recognizable by the server.
    """
    return str(uuid.uuid5(_IDEMPOTENCY_NAMESPACE, f"restaurant:{local_id}:{timestamp or ''}"))


class RemoteApiClient:
    """Async client for the restaurant API; use as an async context manager.

    Every failure is raised as :class:`NetworkError` with the HTTP status
    attached when one was received.
    """

    def __init__(
        self,
        api_base: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = RetryingTransport(transport=transport, max_retries=max_retries)
        self._client: httpx.AsyncClient | None = None

    @property
    def api_base(self) -> str:
        return self._api_base

    async def __aenter__(self) -> RemoteApiClient:
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def list_restaurants(self) -> list[RemoteRestaurant]:
        data = await self._request("GET", "/restaurants")
        if not isinstance(data, list):
            raise RemoteResponseError("expected a JSON array of restaurants")

        records: list[RemoteRestaurant] = []
        for item in data:
            if not isinstance(item, dict):
                logger.debug("Ignoring non-object restaurant record %r", item)
                continue
            try:
                records.append(RemoteRestaurant.model_validate(item))
            except ValidationError as exc:
                logger.warning("Ignoring malformed remote restaurant %r: %s", item.get("id"), exc)
        logger.debug("Fetched %d remote restaurants", len(records))
        return records

    async def create_restaurant(self, payload: RemoteRestaurantPayload, *, idempotency_key: str) -> str:
        """POST *payload* and return the server-assigned id as text."""
        data = await self._request(
            "POST",
            "/restaurants",
            json=payload.model_dump(mode="json", exclude_none=True),
            headers={IDEMPOTENCY_HEADER: idempotency_key},
        )
        server_id = data.get("id") if isinstance(data, dict) else None
        if server_id in (None, ""):
            raise RemoteResponseError("create response did not include an id")
        return str(server_id)

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._api_base,
                transport=self._transport,
                timeout=httpx.Timeout(self._timeout),
                headers={"Accept": "application/json"},
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = self._ensure_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            raise NetworkError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
            ) from exc
