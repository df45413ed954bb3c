"""Pydantic models for dependency graphs.

A graph node is a tagged union discriminated by ``kind``:

- ``ItemTypeNode`` (``kind="item_type"``): an item type with its resolved
  fields and fieldsets;
- ``PluginNode`` (``kind="plugin"``): a plugin, which never has outbound
  edges.

Edges carry the fields that caused them so that a caller can explain
why a node was pulled in ("Post references Person via author").

Node ids are ``itemType--<id>`` / ``plugin--<id>``; edge ids are
``toItemType--<src>-><dst>`` / ``toPlugin--<src>-><dst>``.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field as PydanticField

from schema_porter.schema.models import Field, Fieldset, ItemType, Plugin

ITEM_TYPE_NODE_PREFIX = "itemType--"
PLUGIN_NODE_PREFIX = "plugin--"


def item_type_node_id(item_type_id: str) -> str:
    return f"{ITEM_TYPE_NODE_PREFIX}{item_type_id}"


def plugin_node_id(plugin_id: str) -> str:
    return f"{PLUGIN_NODE_PREFIX}{plugin_id}"


def parse_node_id(node_id: str) -> tuple[str, str]:
    """Split a node id into ``(kind, entity_id)``.

    Raises:
        ValueError: If the id carries no known prefix.
    """
    if node_id.startswith(ITEM_TYPE_NODE_PREFIX):
        return "item_type", node_id[len(ITEM_TYPE_NODE_PREFIX):]
    if node_id.startswith(PLUGIN_NODE_PREFIX):
        return "plugin", node_id[len(PLUGIN_NODE_PREFIX):]
    raise ValueError(f"Unknown node id: {node_id}")


class ItemTypeNode(BaseModel):
    """An item type plus its fields and fieldsets."""

    kind: Literal["item_type"] = "item_type"
    id: str
    item_type: ItemType
    fields: list[Field] = PydanticField(default_factory=list)
    fieldsets: list[Fieldset] = PydanticField(default_factory=list)
    excluded: bool = False
    depth: int = 0
    order: int = 0

    @property
    def entity_id(self) -> str:
        return self.item_type.id

    @property
    def label(self) -> str:
        return self.item_type.name


class PluginNode(BaseModel):
    """A plugin reached through a field editor or addon."""

    kind: Literal["plugin"] = "plugin"
    id: str
    plugin: Plugin
    depth: int = 0
    order: int = 0

    @property
    def entity_id(self) -> str:
        return self.plugin.id

    @property
    def label(self) -> str:
        return self.plugin.name


GraphNode = Annotated[ItemTypeNode | PluginNode, PydanticField(discriminator="kind")]


class Edge(BaseModel):
    """A dependency from an item type node to another node."""

    id: str
    source: str
    target: str
    fields: list[Field] = PydanticField(default_factory=list)


class Graph(BaseModel):
    """Nodes and edges of a dependency graph.

    Example:
        >>> graph = Graph()
        >>> graph.item_type_ids()
        []
    """

    nodes: list[GraphNode] = PydanticField(default_factory=list)
    edges: list[Edge] = PydanticField(default_factory=list)

    def node_by_id(self, node_id: str) -> ItemTypeNode | PluginNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def item_type_node(self, item_type_id: str) -> ItemTypeNode | None:
        node = self.node_by_id(item_type_node_id(item_type_id))
        return node if isinstance(node, ItemTypeNode) else None

    def item_type_nodes(self) -> list[ItemTypeNode]:
        return [n for n in self.nodes if n.kind == "item_type"]

    def plugin_nodes(self) -> list[PluginNode]:
        return [n for n in self.nodes if n.kind == "plugin"]

    def item_type_ids(self) -> list[str]:
        return [n.item_type.id for n in self.item_type_nodes()]

    def plugin_ids(self) -> list[str]:
        return [n.plugin.id for n in self.plugin_nodes()]
