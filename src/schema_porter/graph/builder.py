"""Dependency graph construction.

``build_graph`` walks a schema source breadth-first, level by level,
starting from seed item types, and returns every item type and plugin the
seeds transitively reference through field configuration.

Traversal rules:

- a ``visited`` set keyed by entity id guarantees termination on cyclic
  schemas and prevents duplicate nodes;
- with a selection, item types outside it are flagged ``excluded``; they
  are still scanned (so the graph holds every reachable item type), only
  their edges are dropped unless they link into the selection;
- item types in ``item_type_ids_to_skip`` emit a node and nothing else;
- edges into a seed are not drawn, and no edge ever targets a node that
  is missing from the graph.

The build runs in two phases reported through ``on_progress``: ``scan``
(remote reads; ``done`` stays 0) then ``build`` (one unit per node).
Remote errors propagate; no partial graph is ever returned.

Usage:
    from schema_porter.graph.builder import build_graph

    graph = await build_graph(project, seed_item_type_ids=[post.id])
    for node in graph.nodes:
        print(node.kind, node.label, node.depth)
"""

import asyncio
import logging
from collections.abc import Iterable

from schema_porter.graph.models import (
    Edge,
    Graph,
    ItemTypeNode,
    PluginNode,
    item_type_node_id,
    plugin_node_id,
)
from schema_porter.schema.export_schema import ExportSchema
from schema_porter.schema.models import Field, Fieldset, ItemType, Plugin
from schema_porter.schema.references import (
    linked_item_type_ids,
    linked_plugin_ids,
    plugin_detection_advisory,
)
from schema_porter.schema.source import SchemaSource
from schema_porter.tasks import Progress, ProgressCallback

logger = logging.getLogger(__name__)


def edges_for_item_type(
    item_type: ItemType,
    fields: list[Field],
    root_item_type_ids: set[str],
    installed_plugin_ids: set[str] | None,
) -> tuple[list[Edge], list[str], list[str]]:
    """Build the outbound edges of one item type.

    Each edge aggregates every field that references the same target.
    Returns ``(edges, linked_item_type_ids, linked_plugin_ids)``; the id
    lists are in first-seen order.
    """
    edges: dict[str, Edge] = {}
    item_type_ids: dict[str, None] = {}
    plugin_ids: dict[str, None] = {}

    def _add(edge_id: str, target: str, field: Field) -> None:
        edge = edges.get(edge_id)
        if edge is None:
            edges[edge_id] = Edge(
                id=edge_id,
                source=item_type_node_id(item_type.id),
                target=target,
                fields=[field],
            )
        else:
            edge.fields.append(field)

    for field in fields:
        for linked_id in sorted(linked_item_type_ids(field)):
            if linked_id in root_item_type_ids:
                continue
            item_type_ids[linked_id] = None
            _add(
                f"toItemType--{item_type.id}->{linked_id}",
                item_type_node_id(linked_id),
                field,
            )
        for plugin_id in sorted(linked_plugin_ids(field, installed_plugin_ids)):
            plugin_ids[plugin_id] = None
            _add(f"toPlugin--{item_type.id}->{plugin_id}", plugin_node_id(plugin_id), field)

    return list(edges.values()), list(item_type_ids), list(plugin_ids)


def _node_sort_key(node: ItemTypeNode | PluginNode) -> tuple[int, str, str]:
    return (0 if node.kind == "item_type" else 1, node.label.lower(), node.id)


def sort_graph(graph: Graph) -> Graph:
    """Deterministic ordering: item types before plugins, then name, then id."""
    graph.nodes.sort(key=_node_sort_key)
    graph.edges.sort(key=lambda e: (e.source, e.target, e.id))
    return graph


def apply_layout(graph: Graph, depths: dict[str, int]) -> Graph:
    """Assign ``depth`` and ``order`` to every node.

    Item type depths come from the BFS level at which they were reached.
    A plugin sits one level below its deepest referencing item type.
    ``order`` is the node's index within its depth, in sorted order.
    """
    for node in graph.item_type_nodes():
        node.depth = depths.get(node.id, 0)

    for node in graph.plugin_nodes():
        sources = [depths.get(e.source, 0) for e in graph.edges if e.target == node.id]
        node.depth = max(sources, default=0) + 1

    counters: dict[int, int] = {}
    for node in graph.nodes:
        node.order = counters.get(node.depth, 0)
        counters[node.depth] = node.order + 1
    return graph


async def build_graph(
    source: SchemaSource,
    seed_item_type_ids: Iterable[str],
    selected_item_type_ids: Iterable[str] | None = None,
    item_type_ids_to_skip: Iterable[str] | None = None,
    on_progress: ProgressCallback | None = None,
) -> Graph:
    """Discover the dependency graph reachable from the seed item types.

    Args:
        source: Live project or export document.
        seed_item_type_ids: Traversal roots (depth 0).
        selected_item_type_ids: Current selection (export use case).
            Empty or None means "everything is selected".
        item_type_ids_to_skip: Item types to show without edges (import
            use case: item types reused from the target project).
        on_progress: Optional progress listener.

    Returns:
        Sorted, laid-out ``Graph``.

    Raises:
        EntityNotFoundError: A referenced item type or plugin is missing.
        TransientRemoteError: The source could not be read.
    """

    def emit(done: int, total: int, label: str, phase: str) -> None:
        if on_progress is not None:
            on_progress(Progress(done=done, total=total, label=label, phase=phase))

    seeds = list(dict.fromkeys(seed_item_type_ids))
    seed_set = set(seeds)
    selection = set(selected_item_type_ids or ()) or None
    skip = set(item_type_ids_to_skip or ())

    known_plugin_ids = await source.get_known_plugin_ids()
    if known_plugin_ids is None:
        plugin_detection_advisory()

    item_types: dict[str, ItemType] = {}
    depths: dict[str, int] = {}
    fields_by_item_type: dict[str, list[Field]] = {}
    fieldsets_by_item_type: dict[str, list[Fieldset]] = {}
    plugins: dict[str, Plugin] = {}
    edges: list[Edge] = []

    # =========================================================================
    # Scan: level-by-level BFS over the source
    # =========================================================================

    emit(0, 0, "Scanning schema...", "scan")

    frontier = [await source.get_item_type_by_id(item_type_id) for item_type_id in seeds]
    for item_type in frontier:
        item_types[item_type.id] = item_type

    level = 0
    while frontier:
        results = await asyncio.gather(
            *(source.get_item_type_fields_and_fieldsets(it) for it in frontier)
        )
        next_frontier: list[ItemType] = []

        for item_type, (fields, fieldsets) in zip(frontier, results):
            depths[item_type_node_id(item_type.id)] = level
            fields_by_item_type[item_type.id] = fields
            fieldsets_by_item_type[item_type.id] = fieldsets
            emit(0, 0, f"Scanning: {item_type.name}", "scan")

            if item_type.id in skip:
                continue

            item_type_edges, linked_ids, plugin_ids = edges_for_item_type(
                item_type, fields, seed_set, known_plugin_ids
            )
            # Selection decides which edges are drawn, never what is scanned
            if (
                selection is None
                or item_type.id in selection
                or any(linked_id in selection for linked_id in linked_ids)
            ):
                edges.extend(item_type_edges)

            for linked_id in linked_ids:
                if linked_id not in item_types:
                    linked = await source.get_item_type_by_id(linked_id)
                    item_types[linked_id] = linked
                    next_frontier.append(linked)
            for plugin_id in plugin_ids:
                if plugin_id not in plugins:
                    plugins[plugin_id] = await source.get_plugin_by_id(plugin_id)

        frontier = next_frontier
        level += 1

    # =========================================================================
    # Build: emit nodes
    # =========================================================================

    total = len(item_types) + len(plugins)
    done = 0
    emit(done, total, "Preparing graph...", "build")

    graph = Graph()
    for item_type in item_types.values():
        graph.nodes.append(
            ItemTypeNode(
                id=item_type_node_id(item_type.id),
                item_type=item_type,
                fields=fields_by_item_type.get(item_type.id, []),
                fieldsets=fieldsets_by_item_type.get(item_type.id, []),
                excluded=selection is not None and item_type.id not in selection,
            )
        )
        done += 1
        emit(done, total, f"{item_type.kind_label}: {item_type.name}", "build")

    for plugin in plugins.values():
        graph.nodes.append(PluginNode(id=plugin_node_id(plugin.id), plugin=plugin))
        done += 1
        emit(done, total, f"Plugin: {plugin.name}", "build")

    node_ids = {node.id for node in graph.nodes}
    graph.edges = [edge for edge in edges if edge.target in node_ids]

    logger.debug(
        "Built graph with %d item types, %d plugins, %d edges",
        len(item_types),
        len(plugins),
        len(graph.edges),
    )
    return apply_layout(sort_graph(graph), depths)


async def build_graph_from_export(
    export_schema: ExportSchema,
    item_type_ids_to_skip: Iterable[str] | None = None,
    on_progress: ProgressCallback | None = None,
) -> Graph:
    """Build the import-side graph of a document, rooted at its root item type."""
    return await build_graph(
        export_schema,
        [export_schema.root_item_type.id],
        item_type_ids_to_skip=item_type_ids_to_skip,
        on_progress=on_progress,
    )
