"""Import document building.

``build_import_doc`` walks an export document level by level from its
root, applying conflict resolutions:

- an item type resolved ``reuse_existing`` is mapped onto the
  conflicting target item type and its fields are not walked;
- any other item type is queued for creation (with its rename, if any)
  and its references are walked;
- a plugin resolved ``reuse_existing`` is mapped, a ``skip`` plugin is
  dropped, and a plugin without conflict is queued for creation.

Every reached item type lands in exactly one of ``entities_to_create``
and ``ids_to_reuse``.
"""

import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field as PydanticField

from schema_porter.errors import UnresolvedConflictError
from schema_porter.migration.conflicts import ConflictMap
from schema_porter.migration.resolutions import (
    Rename,
    ReuseExisting,
    Resolutions,
    validate_resolutions,
)
from schema_porter.schema.export_schema import ExportSchema
from schema_porter.schema.models import Field, Fieldset, ItemType, Plugin
from schema_porter.schema.references import linked_item_type_ids, linked_plugin_ids

logger = logging.getLogger(__name__)


class ItemTypeToCreate(BaseModel):
    """An item type to create, with everything it owns."""

    entity: ItemType
    fields: list[Field] = PydanticField(default_factory=list)
    fieldsets: list[Fieldset] = PydanticField(default_factory=list)
    rename: Rename | None = None

    @property
    def name(self) -> str:
        return self.rename.name if self.rename else self.entity.name

    @property
    def api_key(self) -> str:
        return self.rename.api_key if self.rename else self.entity.api_key


class ItemTypesPlan(BaseModel):
    entities_to_create: list[ItemTypeToCreate] = PydanticField(default_factory=list)
    ids_to_reuse: dict[str, str] = PydanticField(default_factory=dict)


class PluginsPlan(BaseModel):
    entities_to_create: list[Plugin] = PydanticField(default_factory=list)
    ids_to_reuse: dict[str, str] = PydanticField(default_factory=dict)


class ImportDoc(BaseModel):
    """What an import will create and what it maps onto existing entities."""

    item_types: ItemTypesPlan = PydanticField(default_factory=ItemTypesPlan)
    plugins: PluginsPlan = PydanticField(default_factory=PluginsPlan)
    skipped_plugin_ids: list[str] = PydanticField(default_factory=list)

    @property
    def field_count(self) -> int:
        return sum(len(entry.fields) for entry in self.item_types.entities_to_create)

    @property
    def fieldset_count(self) -> int:
        return sum(len(entry.fieldsets) for entry in self.item_types.entities_to_create)


def build_import_doc(
    export_schema: ExportSchema,
    conflicts: ConflictMap,
    resolutions: Resolutions,
    target_item_types: Iterable[ItemType] | None = None,
) -> ImportDoc:
    """Turn an export document plus resolutions into an import plan.

    Args:
        export_schema: The parsed export document.
        conflicts: Output of ``detect_conflicts`` against the target.
        resolutions: Effective resolutions (see ``build_resolutions``).
        target_item_types: Existing target item types; when given, renames
            are also validated against them.

    Raises:
        UnresolvedConflictError: A reached conflict has no resolution, or
            a resolution is invalid.
    """
    result = ImportDoc()
    document_plugin_ids = set(export_schema.plugins_by_id)
    errors: dict[str, str] = {}

    visited_item_type_ids: set[str] = set()
    visited_plugin_ids: set[str] = set()
    level: list[tuple[str, str]] = [("item_type", export_schema.root_item_type.id)]

    while level:
        next_level: dict[tuple[str, str], None] = {}

        for kind, entity_id in level:
            if kind == "item_type":
                if entity_id in visited_item_type_ids:
                    continue
                visited_item_type_ids.add(entity_id)
                item_type = export_schema.get_item_type(entity_id)
                conflict = conflicts.item_types.get(entity_id)
                resolution = resolutions.item_types.get(entity_id) if conflict else None

                if conflict is not None and resolution is None:
                    errors[f"item_type:{entity_id}"] = "Conflict is unresolved"

                if isinstance(resolution, ReuseExisting):
                    result.item_types.ids_to_reuse[entity_id] = conflict.id
                    continue

                fields = export_schema.get_item_type_fields(item_type)
                result.item_types.entities_to_create.append(
                    ItemTypeToCreate(
                        entity=item_type,
                        fields=fields,
                        fieldsets=export_schema.get_item_type_fieldsets(item_type),
                        rename=resolution if isinstance(resolution, Rename) else None,
                    )
                )

                for field in fields:
                    for linked_id in sorted(linked_item_type_ids(field)):
                        if linked_id in export_schema.item_types_by_id:
                            next_level[("item_type", linked_id)] = None
                    for plugin_id in sorted(linked_plugin_ids(field, document_plugin_ids)):
                        next_level[("plugin", plugin_id)] = None
            else:
                if entity_id in visited_plugin_ids:
                    continue
                visited_plugin_ids.add(entity_id)
                plugin = export_schema.get_plugin(entity_id)
                conflict = conflicts.plugins.get(entity_id)
                resolution = resolutions.plugins.get(entity_id) if conflict else None

                if conflict is None:
                    result.plugins.entities_to_create.append(plugin)
                elif resolution is None:
                    errors[f"plugin:{entity_id}"] = "Conflict is unresolved"
                elif isinstance(resolution, ReuseExisting):
                    result.plugins.ids_to_reuse[entity_id] = conflict.id
                else:
                    result.skipped_plugin_ids.append(entity_id)

        level = list(next_level)

    if target_item_types is not None:
        errors.update(
            validate_resolutions(
                conflicts,
                resolutions,
                export_schema.item_types,
                target_item_types,
                included_item_type_ids=visited_item_type_ids,
                included_plugin_ids=visited_plugin_ids,
            )
        )

    if errors:
        raise UnresolvedConflictError(errors)

    logger.info(
        "Import plan: %d item types to create, %d reused, %d plugins to create, %d reused",
        len(result.item_types.entities_to_create),
        len(result.item_types.ids_to_reuse),
        len(result.plugins.entities_to_create),
        len(result.plugins.ids_to_reuse),
    )
    return result
