"""Structural analysis of dependency graphs.

Adjacency maps, connected components, strongly connected components
(Tarjan) and edge lookups.  All functions work on node ids and never
mutate the graph.
"""

from schema_porter.graph.models import Edge, Graph, ItemTypeNode, PluginNode

Adjacency = dict[str, set[str]]


def build_directed_adjacency(graph: Graph) -> Adjacency:
    adjacency: Adjacency = {node.id: set() for node in graph.nodes}
    for edge in graph.edges:
        adjacency.setdefault(edge.source, set()).add(edge.target)
        adjacency.setdefault(edge.target, set())
    return adjacency


def build_undirected_adjacency(graph: Graph) -> Adjacency:
    adjacency: Adjacency = {node.id: set() for node in graph.nodes}
    for edge in graph.edges:
        adjacency.setdefault(edge.source, set()).add(edge.target)
        adjacency.setdefault(edge.target, set()).add(edge.source)
    return adjacency


def get_connected_components(graph: Graph) -> list[list[str]]:
    """Weakly connected components, in node order."""
    adjacency = build_undirected_adjacency(graph)
    seen: set[str] = set()
    components: list[list[str]] = []

    for start in adjacency:
        if start in seen:
            continue
        seen.add(start)
        component: list[str] = []
        queue = [start]
        while queue:
            current = queue.pop(0)
            component.append(current)
            for neighbor in sorted(adjacency[current]):
                if neighbor not in seen:
                    seen.add(neighbor)
                    queue.append(neighbor)
        components.append(component)

    return components


def get_strongly_connected_components(graph: Graph) -> list[list[str]]:
    """Tarjan's algorithm, iterative so deep schemas cannot hit the recursion limit."""
    adjacency = build_directed_adjacency(graph)
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    for root in adjacency:
        if root in index_of:
            continue

        work: list[tuple[str, list[str]]] = [(root, sorted(adjacency[root]))]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, pending = work[-1]
            if pending:
                neighbor = pending.pop(0)
                if neighbor not in index_of:
                    index_of[neighbor] = lowlink[neighbor] = counter
                    counter += 1
                    stack.append(neighbor)
                    on_stack.add(neighbor)
                    work.append((neighbor, sorted(adjacency[neighbor])))
                elif neighbor in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[neighbor])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

            if lowlink[node] == index_of[node]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

    return components


def count_cycles(graph: Graph) -> int:
    """Number of strongly connected components with more than one node."""
    return sum(1 for component in get_strongly_connected_components(graph) if len(component) > 1)


def split_nodes_by_kind(graph: Graph) -> tuple[list[ItemTypeNode], list[PluginNode]]:
    return graph.item_type_nodes(), graph.plugin_nodes()


def find_inbound_edges(
    graph: Graph,
    target_id: str,
    source_whitelist: set[str] | None = None,
) -> list[Edge]:
    return [
        edge
        for edge in graph.edges
        if edge.target == target_id
        and (source_whitelist is None or edge.source in source_whitelist)
    ]


def find_outbound_edges(graph: Graph, source_id: str) -> list[Edge]:
    return [edge for edge in graph.edges if edge.source == source_id]
