"""Async adapter for a JSON:API content-management schema endpoint.

Provides ``AsyncCmaAdapter``, an implementation of the ``SchemaClient``
protocol over ``httpx.AsyncClient``.

The HTTP client is created lazily on first use under an ``asyncio.Lock``.
List endpoints are paginated transparently with
``page[offset]``/``page[limit]`` whenever the response advertises
``meta.total_count``.  Error statuses are mapped onto the
``schema_porter.errors`` taxonomy; there is no retry or backoff here --
throttled writes become per-entity failures in the executor, throttled
reads abort the graph build.

Usage:
    from schema_porter.adapters.cma import AsyncCmaAdapter

    adapter = AsyncCmaAdapter(api_token="...", environment="staging")
    item_types = await adapter.list_item_types()
    await adapter.close()
"""

import asyncio
import base64
import logging
import uuid
from typing import Any

import httpx

from schema_porter.errors import (
    AuthenticationError,
    RateLimitedError,
    RemoteRequestError,
    RemoteServerError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://site-api.datocms.com"
DEFAULT_PAGE_SIZE = 100


def generate_entity_id() -> str:
    """Return a 22-character url-safe random id (a base64 encoded UUID4)."""
    return base64.urlsafe_b64encode(uuid.uuid4().bytes).rstrip(b"=").decode("ascii")


class AsyncCmaAdapter:
    """Async implementation of the ``SchemaClient`` protocol over httpx.

    Args:
        api_token: API token with schema read/write permissions.
        base_url: API root URL.
        environment: Optional sandbox environment name (sent as
            ``X-Environment``).
        timeout: Request timeout in seconds.
        transport: Optional ``httpx`` transport (e.g. ``MockTransport`` in tests).

    Example:
        adapter = AsyncCmaAdapter(api_token="abc123")
        site = await adapter.get_site()
        await adapter.close()
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        environment: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_token: str = api_token
        self._base_url: str = base_url.rstrip("/")
        self._environment: str | None = environment
        self._timeout: float = timeout
        self._transport: httpx.AsyncBaseTransport | None = transport
        self._client: httpx.AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client exactly once."""
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    headers = {
                        "Authorization": f"Bearer {self._api_token}",
                        "Accept": "application/json",
                        "Content-Type": "application/vnd.api+json",
                        "X-Api-Version": "3",
                    }
                    if self._environment:
                        headers["X-Environment"] = self._environment
                    self._client = httpx.AsyncClient(
                        base_url=self._base_url,
                        headers=headers,
                        timeout=httpx.Timeout(self._timeout, connect=10.0),
                        transport=self._transport,
                    )
        return self._client

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        client = await self._get_client()
        logger.debug("%s %s", method, path)
        try:
            response = await client.request(method, path, json=json, params=params)
        except httpx.RequestError as e:
            raise RemoteServerError(
                f"{method} {path} failed: {e}", method=method, path=path
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"{method} {path} was not authorized (HTTP {status})",
                status_code=status,
                path=path,
            )
        if status == 429:
            raise RateLimitedError(
                f"{method} {path} was rate limited (HTTP 429)",
                status_code=status,
                path=path,
                retry_after=response.headers.get("Retry-After"),
            )
        if status >= 500:
            raise RemoteServerError(
                f"{method} {path} failed (HTTP {status})",
                status_code=status,
                path=path,
            )
        if status >= 400:
            raise RemoteRequestError(
                f"{method} {path} was rejected (HTTP {status}): {response.text[:500]}",
                status_code=status,
                path=path,
            )
        if not response.content:
            return {}
        return response.json()

    async def _list(self, path: str) -> list[dict[str, Any]]:
        """GET a collection, following offset pagination when advertised."""
        records: list[dict[str, Any]] = []
        offset = 0
        while True:
            params = {"page[offset]": offset, "page[limit]": DEFAULT_PAGE_SIZE} if offset else None
            body = await self._request("GET", path, params=params)
            page = body.get("data") or []
            records.extend(page)
            total = (body.get("meta") or {}).get("total_count")
            if total is None or not page or len(records) >= int(total):
                return records
            offset = len(records)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_site(self) -> dict[str, Any]:
        body = await self._request("GET", "/site")
        return body["data"]

    async def list_item_types(self) -> list[dict[str, Any]]:
        return await self._list("/item-types")

    async def list_fields(self, item_type_id: str) -> list[dict[str, Any]]:
        return await self._list(f"/item-types/{item_type_id}/fields")

    async def list_fieldsets(self, item_type_id: str) -> list[dict[str, Any]]:
        return await self._list(f"/item-types/{item_type_id}/fieldsets")

    async def list_plugins(self) -> list[dict[str, Any]]:
        return await self._list("/plugins")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_plugin(self, data: dict[str, Any]) -> dict[str, Any]:
        body = await self._request("POST", "/plugins", json={"data": data})
        return body["data"]

    async def update_plugin(self, plugin_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        data = {"type": "plugin", "id": plugin_id, "attributes": attributes}
        body = await self._request("PUT", f"/plugins/{plugin_id}", json={"data": data})
        return body["data"]

    async def create_item_type(self, data: dict[str, Any]) -> dict[str, Any]:
        body = await self._request("POST", "/item-types", json={"data": data})
        return body["data"]

    async def update_item_type(self, item_type_id: str, data: dict[str, Any]) -> dict[str, Any]:
        body = await self._request("PUT", f"/item-types/{item_type_id}", json={"data": data})
        return body["data"]

    async def create_fieldset(self, item_type_id: str, data: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "POST", f"/item-types/{item_type_id}/fieldsets", json={"data": data}
        )
        return body["data"]

    async def update_fieldset(self, fieldset_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        data = {"type": "fieldset", "id": fieldset_id, "attributes": attributes}
        body = await self._request("PUT", f"/fieldsets/{fieldset_id}", json={"data": data})
        return body["data"]

    async def create_field(self, item_type_id: str, data: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "POST", f"/item-types/{item_type_id}/fields", json={"data": data}
        )
        return body["data"]

    async def update_field(self, field_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        data = {"type": "field", "id": field_id, "attributes": attributes}
        body = await self._request("PUT", f"/fields/{field_id}", json={"data": data})
        return body["data"]

    def generate_id(self) -> str:
        return generate_entity_id()

    async def close(self) -> None:
        """Close the HTTP client; a no-op if no request was ever made."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
