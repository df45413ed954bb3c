"""Tests for the HTTP adapter, the cached project source and recipe fetching."""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from schema_porter.adapters.cma import AsyncCmaAdapter, generate_entity_id
from schema_porter.errors import (
    AuthenticationError,
    EntityNotFoundError,
    InvalidDocumentError,
    RateLimitedError,
    RemoteRequestError,
    RemoteServerError,
)
from schema_porter.migration.recipe import fetch_recipe, recipe_label
from schema_porter.schema.project import ProjectSchema


# ============================================================================
# Helpers
# ============================================================================


def _make_adapter(handler, environment: str | None = None) -> AsyncCmaAdapter:
    return AsyncCmaAdapter(
        api_token="secret",
        base_url="https://api.test",
        environment=environment,
        transport=httpx.MockTransport(handler),
    )


def _item_type(item_type_id: str, is_block: bool = False) -> dict:
    return {
        "id": item_type_id,
        "type": "item_type",
        "attributes": {"name": item_type_id.title(), "api_key": item_type_id, "modular_block": is_block},
        "relationships": {},
    }


def _make_mock_client() -> AsyncMock:
    client = AsyncMock()
    client.list_item_types.return_value = [_item_type("post"), _item_type("quote", is_block=True)]
    client.list_plugins.return_value = [
        {"id": "stars", "type": "plugin", "attributes": {"name": "Stars", "package_name": "stars"}}
    ]
    client.list_fields.return_value = []
    client.list_fieldsets.return_value = [
        {"id": "fs", "type": "fieldset", "attributes": {"title": "Meta"}, "relationships": {}}
    ]
    return client


# ============================================================================
# Test: AsyncCmaAdapter
# ============================================================================


class TestAsyncCmaAdapter:
    """Request shape, pagination and status mapping."""

    @pytest.mark.asyncio
    async def test_headers_and_environment(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"id": "1", "attributes": {"locales": ["en"]}}})

        adapter = _make_adapter(handler, environment="staging")
        site = await adapter.get_site()
        await adapter.close()

        assert site["attributes"]["locales"] == ["en"]
        request = seen[0]
        assert request.url.path == "/site"
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.headers["X-Environment"] == "staging"
        assert request.headers["X-Api-Version"] == "3"

    @pytest.mark.asyncio
    async def test_no_environment_header_by_default(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        adapter = _make_adapter(handler)
        await adapter.list_plugins()
        await adapter.close()

        assert "X-Environment" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_pagination_follows_total_count(self) -> None:
        offsets: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            offset = request.url.params.get("page[offset]")
            offsets.append(offset)
            if offset is None:
                data = [_item_type("a"), _item_type("b")]
            else:
                data = [_item_type("c")]
            return httpx.Response(200, json={"data": data, "meta": {"total_count": 3}})

        adapter = _make_adapter(handler)
        records = await adapter.list_item_types()
        await adapter.close()

        assert [r["id"] for r in records] == ["a", "b", "c"]
        assert offsets == [None, "2"]

    @pytest.mark.asyncio
    async def test_write_wraps_data(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"id": "f1"}})

        adapter = _make_adapter(handler)
        await adapter.update_field("f1", {"position": 3})
        await adapter.close()

        assert bodies == [{"data": {"type": "field", "id": "f1", "attributes": {"position": 3}}}]

    @pytest.mark.parametrize(
        ("status", "error_cls"),
        [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (429, RateLimitedError),
            (500, RemoteServerError),
            (422, RemoteRequestError),
        ],
    )
    @pytest.mark.asyncio
    async def test_status_mapping(self, status: int, error_cls: type) -> None:
        adapter = _make_adapter(lambda request: httpx.Response(status, json={"errors": []}))

        with pytest.raises(error_cls) as exc_info:
            await adapter.list_item_types()
        await adapter.close()

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_connection_error_is_server_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter = _make_adapter(handler)

        with pytest.raises(RemoteServerError):
            await adapter.get_site()
        await adapter.close()

    @pytest.mark.asyncio
    async def test_close_without_requests(self) -> None:
        adapter = AsyncCmaAdapter(api_token="secret")

        await adapter.close()

    def test_generated_ids(self) -> None:
        ids = {generate_entity_id() for _ in range(50)}

        assert len(ids) == 50
        assert all(len(i) == 22 for i in ids)


# ============================================================================
# Test: ProjectSchema
# ============================================================================


class TestProjectSchema:
    """Caching and lookups over a mocked client."""

    @pytest.mark.asyncio
    async def test_item_types_listed_once(self) -> None:
        client = _make_mock_client()
        schema = ProjectSchema(client)

        await schema.get_all_item_types()
        post = await schema.get_item_type_by_api_key("post")
        quote = await schema.get_item_type_by_name("Quote")

        assert post.id == "post"
        assert quote.is_block
        assert [it.id for it in await schema.get_all_block_models()] == ["quote"]
        assert client.list_item_types.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_item_type(self) -> None:
        schema = ProjectSchema(_make_mock_client())

        with pytest.raises(EntityNotFoundError):
            await schema.get_item_type_by_id("missing")

    @pytest.mark.asyncio
    async def test_concurrent_field_reads_share_one_request(self) -> None:
        client = _make_mock_client()
        schema = ProjectSchema(client)
        post = await schema.get_item_type_by_id("post")

        results = await asyncio.gather(
            schema.get_item_type_fields_and_fieldsets(post),
            schema.get_item_type_fields_and_fieldsets(post),
        )
        await schema.get_item_type_fields_and_fieldsets(post)

        assert client.list_fields.await_count == 1
        assert results[0] == results[1]
        fieldset = results[0][1][0]
        assert fieldset.item_type_id == "post"

    @pytest.mark.asyncio
    async def test_blocks_have_no_fieldsets(self) -> None:
        client = _make_mock_client()
        schema = ProjectSchema(client)
        quote = await schema.get_item_type_by_id("quote")

        _, fieldsets = await schema.get_item_type_fields_and_fieldsets(quote)

        assert fieldsets == []
        client.list_fieldsets.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_known_plugin_ids(self) -> None:
        schema = ProjectSchema(_make_mock_client())

        assert await schema.get_known_plugin_ids() == {"stars"}

    @pytest.mark.asyncio
    async def test_known_plugin_ids_unknown_without_permission(self) -> None:
        client = _make_mock_client()
        client.list_plugins.side_effect = AuthenticationError("forbidden", status_code=403)
        schema = ProjectSchema(client)

        assert await schema.get_known_plugin_ids() is None

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self) -> None:
        client = _make_mock_client()

        async with ProjectSchema(client, close_client=True):
            pass

        client.close.assert_awaited_once()


# ============================================================================
# Test: recipes
# ============================================================================


RECIPE = {
    "version": "2",
    "rootItemTypeId": "post",
    "entities": [_item_type("post")],
}


class TestRecipes:
    def test_recipe_label(self) -> None:
        assert recipe_label("https://cdn.test/recipes/blog.json") == "blog.json"
        assert recipe_label("https://cdn.test/") == "Imported schema"

    @pytest.mark.asyncio
    async def test_fetch_recipe(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=RECIPE))

        label, schema = await fetch_recipe("https://cdn.test/blog", transport=transport)

        assert label == "blog"
        assert schema.root_item_type.api_key == "post"

    @pytest.mark.asyncio
    async def test_explicit_label(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=RECIPE))

        label, _ = await fetch_recipe("https://cdn.test/blog", label="Blog", transport=transport)

        assert label == "Blog"

    @pytest.mark.parametrize(
        ("status", "error_cls"),
        [(404, RemoteRequestError), (503, RemoteServerError)],
    )
    @pytest.mark.asyncio
    async def test_http_errors(self, status: int, error_cls: type) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(status))

        with pytest.raises(error_cls):
            await fetch_recipe("https://cdn.test/blog", transport=transport)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(InvalidDocumentError):
            await fetch_recipe("https://cdn.test/blog", transport=transport)
