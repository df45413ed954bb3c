"""Selection expansion over an already-built graph.

``expand_selection_with_dependencies`` computes the transitive closure of
a selection without any remote read, and reports the delta so that a
caller can apply "select all dependencies" and later undo exactly that.
"""

from collections.abc import Iterable

from pydantic import BaseModel, Field as PydanticField

from schema_porter.graph.models import Graph
from schema_porter.schema.references import (
    linked_item_type_ids,
    linked_plugin_ids,
    plugin_detection_advisory,
)


class DependencyExpansion(BaseModel):
    """Closure of a selection and what the closure added to it."""

    item_type_ids: list[str] = PydanticField(default_factory=list)
    plugin_ids: list[str] = PydanticField(default_factory=list)
    added_item_type_ids: list[str] = PydanticField(default_factory=list)
    added_plugin_ids: list[str] = PydanticField(default_factory=list)

    @property
    def is_fixed_point(self) -> bool:
        return not self.added_item_type_ids and not self.added_plugin_ids


def expand_selection_with_dependencies(
    graph: Graph | None,
    seed_item_type_ids: Iterable[str],
    seed_plugin_ids: Iterable[str] = (),
    installed_plugin_ids: set[str] | None = None,
) -> DependencyExpansion:
    """Add every item type and plugin the selection depends on.

    Walks item type nodes through their fields' references.  Ids the
    graph has no node for are still added (they are referenced) but not
    walked further.  Calling this again on its own ``item_type_ids`` /
    ``plugin_ids`` yields an empty delta.

    Example:
        >>> result = expand_selection_with_dependencies(graph, ["post"])
        >>> result.added_item_type_ids
        ['person']
    """
    initial_item_type_ids = list(dict.fromkeys(seed_item_type_ids))
    initial_plugin_ids = list(dict.fromkeys(seed_plugin_ids))
    item_type_ids: dict[str, None] = dict.fromkeys(initial_item_type_ids)
    plugin_ids: dict[str, None] = dict.fromkeys(initial_plugin_ids)

    if graph is None:
        return DependencyExpansion(
            item_type_ids=list(item_type_ids),
            plugin_ids=list(plugin_ids),
        )

    if installed_plugin_ids is None:
        plugin_detection_advisory()

    queue = list(initial_item_type_ids)
    visited: set[str] = set()
    while queue:
        current_id = queue.pop(0)
        if current_id in visited:
            continue
        visited.add(current_id)

        node = graph.item_type_node(current_id)
        if node is None:
            continue

        for field in node.fields:
            for linked_id in sorted(linked_item_type_ids(field)):
                if linked_id not in item_type_ids:
                    item_type_ids[linked_id] = None
                    queue.append(linked_id)
            for plugin_id in sorted(linked_plugin_ids(field, installed_plugin_ids)):
                plugin_ids.setdefault(plugin_id, None)

    initial_item_type_set = set(initial_item_type_ids)
    initial_plugin_set = set(initial_plugin_ids)
    return DependencyExpansion(
        item_type_ids=list(item_type_ids),
        plugin_ids=list(plugin_ids),
        added_item_type_ids=[i for i in item_type_ids if i not in initial_item_type_set],
        added_plugin_ids=[p for p in plugin_ids if p not in initial_plugin_set],
    )


def remove_added_dependencies(
    item_type_ids: Iterable[str],
    plugin_ids: Iterable[str],
    expansion: DependencyExpansion,
) -> tuple[list[str], list[str]]:
    """Undo an expansion: drop exactly what it added, nothing more."""
    added_item_types = set(expansion.added_item_type_ids)
    added_plugins = set(expansion.added_plugin_ids)
    return (
        [i for i in item_type_ids if i not in added_item_types],
        [p for p in plugin_ids if p not in added_plugins],
    )
