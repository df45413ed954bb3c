"""Schema-management client protocol definition.

Defines the ``SchemaClient`` Protocol every remote adapter must implement.
All I/O methods are ``async def`` -- the engine is async-first.

Payloads are JSON:API resources (``{id, type, attributes, relationships}``)
so that records round-trip through the export file untouched.  List
methods hide pagination from callers.

Usage:
    from schema_porter.adapters.base import SchemaClient

    async def count_models(client: SchemaClient) -> int:
        item_types = await client.list_item_types()
        return sum(1 for it in item_types if not it["attributes"]["modular_block"])
"""

from typing import Any, Protocol


class SchemaClient(Protocol):
    """Schema-management API interface that all adapters must implement.

    All I/O methods are async -- callers must ``await`` every operation.
    ``generate_id()`` is sync: ids are minted locally so that forward
    references can be resolved before any entity exists remotely.
    """

    async def get_site(self) -> dict[str, Any]:
        """Return the project resource (``attributes.locales`` is required)."""
        ...

    async def list_item_types(self) -> list[dict[str, Any]]:
        """List every item type (models and blocks) of the project."""
        ...

    async def list_fields(self, item_type_id: str) -> list[dict[str, Any]]:
        """List the fields of one item type."""
        ...

    async def list_fieldsets(self, item_type_id: str) -> list[dict[str, Any]]:
        """List the fieldsets of one item type."""
        ...

    async def list_plugins(self) -> list[dict[str, Any]]:
        """List every installed plugin."""
        ...

    async def create_plugin(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a plugin from a JSON:API ``data`` object (caller-chosen id)."""
        ...

    async def update_plugin(self, plugin_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update attributes of a plugin."""
        ...

    async def create_item_type(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create an item type from a JSON:API ``data`` object."""
        ...

    async def update_item_type(self, item_type_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Update an item type with a JSON:API ``data`` object."""
        ...

    async def create_fieldset(self, item_type_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a fieldset inside an item type."""
        ...

    async def update_fieldset(self, fieldset_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update attributes of a fieldset."""
        ...

    async def create_field(self, item_type_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a field inside an item type."""
        ...

    async def update_field(self, field_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update attributes of a field."""
        ...

    def generate_id(self) -> str:
        """Mint a fresh identifier accepted by the API for a new entity."""
        ...

    async def close(self) -> None:
        """Release the underlying connection pool."""
        ...
