"""Document-backed schema source.

``ExportSchema`` exposes a parsed export document through the same
``SchemaSource`` interface as a live project, so graph building, conflict
detection and import-document building work on either.

Everything is in memory; the async methods never suspend.
"""

from schema_porter.errors import EntityNotFoundError
from schema_porter.schema.document import ExportDocument
from schema_porter.schema.models import Field, Fieldset, ItemType, Plugin


class ExportSchema:
    """In-memory schema source over an ``ExportDocument``."""

    def __init__(self, doc: ExportDocument) -> None:
        self.doc = doc
        self.item_types_by_id: dict[str, ItemType] = {it.id: it for it in doc.item_types}
        self.plugins_by_id: dict[str, Plugin] = {p.id: p for p in doc.plugins}
        self.fields_by_id: dict[str, Field] = {f.id: f for f in doc.fields}
        self.fieldsets_by_id: dict[str, Fieldset] = {fs.id: fs for fs in doc.fieldsets}

    @property
    def root_item_type(self) -> ItemType:
        return self.item_types_by_id[self.doc.root_item_type_id]

    @property
    def item_types(self) -> list[ItemType]:
        return list(self.item_types_by_id.values())

    @property
    def plugins(self) -> list[Plugin]:
        return list(self.plugins_by_id.values())

    def get_item_type(self, item_type_id: str) -> ItemType:
        item_type = self.item_types_by_id.get(item_type_id)
        if item_type is None:
            raise EntityNotFoundError("Item type", item_type_id)
        return item_type

    def get_plugin(self, plugin_id: str) -> Plugin:
        plugin = self.plugins_by_id.get(plugin_id)
        if plugin is None:
            raise EntityNotFoundError("Plugin", plugin_id)
        return plugin

    def get_item_type_fields(self, item_type: ItemType) -> list[Field]:
        """Fields of an item type in relationship order.

        Falls back to ownership (sorted by position) when the item type
        record does not list its fields.
        """
        if item_type.field_ids:
            return [self.fields_by_id[fid] for fid in item_type.field_ids if fid in self.fields_by_id]
        owned = [f for f in self.fields_by_id.values() if f.item_type_id == item_type.id]
        return sorted(owned, key=lambda f: f.position)

    def get_item_type_fieldsets(self, item_type: ItemType) -> list[Fieldset]:
        if item_type.fieldset_ids:
            return [
                self.fieldsets_by_id[fid]
                for fid in item_type.fieldset_ids
                if fid in self.fieldsets_by_id
            ]
        owned = [fs for fs in self.fieldsets_by_id.values() if fs.item_type_id == item_type.id]
        return sorted(owned, key=lambda fs: fs.position)

    # SchemaSource interface

    async def get_all_item_types(self) -> list[ItemType]:
        return self.item_types

    async def get_all_plugins(self) -> list[Plugin]:
        return self.plugins

    async def get_item_type_by_id(self, item_type_id: str) -> ItemType:
        return self.get_item_type(item_type_id)

    async def get_plugin_by_id(self, plugin_id: str) -> Plugin:
        return self.get_plugin(plugin_id)

    async def get_item_type_fields_and_fieldsets(
        self, item_type: ItemType
    ) -> tuple[list[Field], list[Fieldset]]:
        return self.get_item_type_fields(item_type), self.get_item_type_fieldsets(item_type)

    async def get_known_plugin_ids(self) -> set[str] | None:
        """The document's own plugins are the complete installed set."""
        return set(self.plugins_by_id)
