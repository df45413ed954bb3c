"""Conflict detection between an export document and a target project.

An export entity conflicts with a target entity when they share a stable
identifier (item type ``api_key``; plugin ``package_name`` or ``url``)
or, failing that, a display ``name``.  Identifier matches win over name
matches; only the first match is recorded.

Usage:
    from schema_porter.migration.conflicts import detect_conflicts

    conflicts = await detect_conflicts(export_schema, project)
    for export_id, target in conflicts.item_types.items():
        print(export_id, "->", target.api_key)
"""

import logging

from pydantic import BaseModel, Field as PydanticField

from schema_porter.schema.models import ItemType, Plugin
from schema_porter.schema.source import SchemaSource
from schema_porter.tasks import Progress, ProgressCallback

logger = logging.getLogger(__name__)


class ConflictMap(BaseModel):
    """Export entity id -> conflicting target entity."""

    item_types: dict[str, ItemType] = PydanticField(default_factory=dict)
    plugins: dict[str, Plugin] = PydanticField(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.item_types and not self.plugins

    def __len__(self) -> int:
        return len(self.item_types) + len(self.plugins)


def _index(entities: list, key) -> dict:
    """Index by ``key(entity)``, keeping the first entity per key; None keys are ignored."""
    index: dict = {}
    for entity in entities:
        value = key(entity)
        if value and value not in index:
            index[value] = entity
    return index


async def detect_conflicts(
    export_source: SchemaSource,
    target_source: SchemaSource,
    on_progress: ProgressCallback | None = None,
) -> ConflictMap:
    """Find export entities that collide with existing target entities.

    Reads the target's item types and plugins once each.

    Raises:
        TransientRemoteError: The target project could not be read.
    """
    export_item_types = await export_source.get_all_item_types()
    export_plugins = await export_source.get_all_plugins()

    target_item_types = await target_source.get_all_item_types()
    target_plugins = await target_source.get_all_plugins()

    item_types_by_api_key = _index(target_item_types, lambda it: it.api_key)
    item_types_by_name = _index(target_item_types, lambda it: it.name)
    plugins_by_package = _index(target_plugins, lambda p: p.package_name)
    plugins_by_url = _index(target_plugins, lambda p: p.url)
    plugins_by_name = _index(target_plugins, lambda p: p.name)

    total = len(export_item_types) + len(export_plugins)
    done = 0

    def advance(label: str) -> None:
        nonlocal done
        done += 1
        if on_progress is not None:
            on_progress(Progress(done=done, total=total, label=label, phase="conflicts"))

    conflicts = ConflictMap()

    for item_type in export_item_types:
        match = item_types_by_api_key.get(item_type.api_key) or item_types_by_name.get(item_type.name)
        if match is not None:
            conflicts.item_types[item_type.id] = match
        advance(f"{item_type.kind_label}: {item_type.name}")

    for plugin in export_plugins:
        match = (
            (plugin.package_name and plugins_by_package.get(plugin.package_name))
            or (plugin.url and plugins_by_url.get(plugin.url))
            or plugins_by_name.get(plugin.name)
        )
        if match:
            conflicts.plugins[plugin.id] = match
        advance(f"Plugin: {plugin.name}")

    logger.info(
        "Detected %d item type and %d plugin conflicts",
        len(conflicts.item_types),
        len(conflicts.plugins),
    )
    return conflicts
