"""Dependency graph: discovery, closure, and analysis.

Usage:
    from schema_porter.graph import build_graph, expand_selection_with_dependencies
"""

from schema_porter.graph.models import Edge, Graph, ItemTypeNode, PluginNode
from schema_porter.graph.builder import build_graph, build_graph_from_export
from schema_porter.graph.dependencies import (
    DependencyExpansion,
    expand_selection_with_dependencies,
    remove_added_dependencies,
)
from schema_porter.graph.analysis import (
    count_cycles,
    get_connected_components,
    get_strongly_connected_components,
)

__all__ = [
    "Edge",
    "Graph",
    "ItemTypeNode",
    "PluginNode",
    "build_graph",
    "build_graph_from_export",
    "DependencyExpansion",
    "expand_selection_with_dependencies",
    "remove_added_dependencies",
    "count_cycles",
    "get_connected_components",
    "get_strongly_connected_components",
]
