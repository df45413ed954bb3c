"""Schema source protocol.

A schema source is a read-through accessor over a project's item types,
fields, fieldsets and plugins.  Two implementations exist:

- ``ProjectSchema`` -- a live remote project (cached, throttled reads);
- ``ExportSchema`` -- a previously produced export document (in memory).

Graph building, dependency expansion, export and conflict detection are
written against this protocol only.
"""

from typing import Protocol

from schema_porter.schema.models import Field, Fieldset, ItemType, Plugin


class SchemaSource(Protocol):
    """Read access to one project's (or one document's) schema."""

    async def get_all_item_types(self) -> list[ItemType]:
        """Every item type, models and blocks."""
        ...

    async def get_all_plugins(self) -> list[Plugin]:
        """Every plugin."""
        ...

    async def get_item_type_by_id(self, item_type_id: str) -> ItemType:
        """Lookup by id; raises ``EntityNotFoundError`` when missing."""
        ...

    async def get_plugin_by_id(self, plugin_id: str) -> Plugin:
        """Lookup by id; raises ``EntityNotFoundError`` when missing."""
        ...

    async def get_item_type_fields_and_fieldsets(
        self, item_type: ItemType
    ) -> tuple[list[Field], list[Fieldset]]:
        """Fields and fieldsets owned by an item type."""
        ...

    async def get_known_plugin_ids(self) -> set[str] | None:
        """Ids of installed plugins, or None when they cannot be determined."""
        ...
