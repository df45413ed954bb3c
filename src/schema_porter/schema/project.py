"""Live project schema source.

``ProjectSchema`` reads a remote project through a ``SchemaClient`` and
caches what it reads:

- item types and plugins are listed once (two round trips) and indexed
  by id, api key and name;
- fields/fieldsets are fetched per item type on first use; concurrent
  requests for the same item type share one in-flight task;
- per-item-type reads are throttled (default 2 in flight) to stay under
  the API's rate limits.

Usage:
    from schema_porter.schema.project import ProjectSchema

    async with ProjectSchema(client) as schema:
        post = await schema.get_item_type_by_api_key("post")
        fields, fieldsets = await schema.get_item_type_fields_and_fieldsets(post)
"""

import asyncio
import logging

from schema_porter.adapters.base import SchemaClient
from schema_porter.errors import AuthenticationError, EntityNotFoundError
from schema_porter.schema.models import Field, Fieldset, ItemType, Plugin, Site

logger = logging.getLogger(__name__)


class ProjectSchema:
    """Cached, throttled schema source over a remote project.

    Args:
        client: Adapter implementing ``SchemaClient``.
        read_concurrency: Maximum per-item-type reads in flight.
        close_client: Close ``client`` when leaving the ``async with`` block.
    """

    def __init__(
        self,
        client: SchemaClient,
        read_concurrency: int = 2,
        close_client: bool = False,
    ) -> None:
        self.client = client
        self._close_client = close_client
        self._throttle = asyncio.Semaphore(read_concurrency)
        self._load_lock = asyncio.Lock()

        self._item_types: list[ItemType] | None = None
        self._plugins: list[Plugin] | None = None
        self._site: Site | None = None
        self._item_types_by_id: dict[str, ItemType] = {}
        self._item_types_by_api_key: dict[str, ItemType] = {}
        self._item_types_by_name: dict[str, ItemType] = {}
        self._plugins_by_id: dict[str, Plugin] = {}

        self._fields_by_item_type: dict[str, list[Field]] = {}
        self._fieldsets_by_item_type: dict[str, list[Fieldset]] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

    async def __aenter__(self) -> "ProjectSchema":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._close_client:
            await self.client.close()

    # ------------------------------------------------------------------
    # Item types and plugins (listed once)
    # ------------------------------------------------------------------

    async def _load_item_types(self) -> list[ItemType]:
        if self._item_types is None:
            async with self._load_lock:
                if self._item_types is None:
                    raw = await self.client.list_item_types()
                    item_types = [ItemType.from_resource(r) for r in raw]
                    for item_type in item_types:
                        self._item_types_by_id[item_type.id] = item_type
                        self._item_types_by_api_key[item_type.api_key] = item_type
                        self._item_types_by_name[item_type.name] = item_type
                    self._item_types = item_types
                    logger.debug("Loaded %d item types", len(item_types))
        return self._item_types

    async def _load_plugins(self) -> list[Plugin]:
        if self._plugins is None:
            async with self._load_lock:
                if self._plugins is None:
                    raw = await self.client.list_plugins()
                    plugins = [Plugin.from_resource(r) for r in raw]
                    self._plugins_by_id = {p.id: p for p in plugins}
                    self._plugins = plugins
                    logger.debug("Loaded %d plugins", len(plugins))
        return self._plugins

    async def get_site(self) -> Site:
        if self._site is None:
            self._site = Site.from_resource(await self.client.get_site())
        return self._site

    async def get_all_item_types(self) -> list[ItemType]:
        return list(await self._load_item_types())

    async def get_all_models(self) -> list[ItemType]:
        return [it for it in await self._load_item_types() if not it.is_block]

    async def get_all_block_models(self) -> list[ItemType]:
        return [it for it in await self._load_item_types() if it.is_block]

    async def get_all_plugins(self) -> list[Plugin]:
        return list(await self._load_plugins())

    async def get_item_type_by_id(self, item_type_id: str) -> ItemType:
        await self._load_item_types()
        item_type = self._item_types_by_id.get(item_type_id)
        if item_type is None:
            raise EntityNotFoundError("Item type", item_type_id)
        return item_type

    async def get_item_type_by_api_key(self, api_key: str) -> ItemType:
        await self._load_item_types()
        item_type = self._item_types_by_api_key.get(api_key)
        if item_type is None:
            raise EntityNotFoundError("Item type", api_key)
        return item_type

    async def get_item_type_by_name(self, name: str) -> ItemType:
        await self._load_item_types()
        item_type = self._item_types_by_name.get(name)
        if item_type is None:
            raise EntityNotFoundError("Item type", name)
        return item_type

    async def get_plugin_by_id(self, plugin_id: str) -> Plugin:
        await self._load_plugins()
        plugin = self._plugins_by_id.get(plugin_id)
        if plugin is None:
            raise EntityNotFoundError("Plugin", plugin_id)
        return plugin

    async def get_known_plugin_ids(self) -> set[str] | None:
        """Installed plugin ids; None when the token may not list plugins."""
        try:
            plugins = await self._load_plugins()
        except AuthenticationError:
            logger.info("Plugin list is not readable with this token")
            return None
        return {p.id for p in plugins}

    # ------------------------------------------------------------------
    # Fields and fieldsets (per item type, cached)
    # ------------------------------------------------------------------

    async def _fetch_fields_and_fieldsets(
        self, item_type: ItemType
    ) -> tuple[list[Field], list[Fieldset]]:
        async with self._throttle:
            raw_fields = await self.client.list_fields(item_type.id)
            # Blocks cannot own fieldsets
            raw_fieldsets = [] if item_type.is_block else await self.client.list_fieldsets(item_type.id)
        fields = [Field.from_resource(r) for r in raw_fields]
        fieldsets = [Fieldset.from_resource(r) for r in raw_fieldsets]
        for fieldset in fieldsets:
            if not fieldset.item_type_id:
                fieldset.item_type_id = item_type.id
        return fields, fieldsets

    async def get_item_type_fields_and_fieldsets(
        self, item_type: ItemType
    ) -> tuple[list[Field], list[Fieldset]]:
        if item_type.id in self._fields_by_item_type:
            return (
                self._fields_by_item_type[item_type.id],
                self._fieldsets_by_item_type[item_type.id],
            )

        task = self._in_flight.get(item_type.id)
        if task is None:
            task = asyncio.ensure_future(self._fetch_fields_and_fieldsets(item_type))
            self._in_flight[item_type.id] = task
        try:
            fields, fieldsets = await task
        finally:
            self._in_flight.pop(item_type.id, None)

        self._fields_by_item_type[item_type.id] = fields
        self._fieldsets_by_item_type[item_type.id] = fieldsets
        return fields, fieldsets
