"""Tests for dependency graph building, selection closure, and analysis."""

from unittest.mock import AsyncMock

import pytest

from schema_porter.errors import EntityNotFoundError, RateLimitedError
from schema_porter.graph.analysis import (
    count_cycles,
    find_inbound_edges,
    find_outbound_edges,
    get_connected_components,
    get_strongly_connected_components,
    split_nodes_by_kind,
)
from schema_porter.graph.builder import build_graph, build_graph_from_export
from schema_porter.graph.dependencies import (
    expand_selection_with_dependencies,
    remove_added_dependencies,
)
from schema_porter.graph.models import (
    Edge,
    Graph,
    ItemTypeNode,
    PluginNode,
    item_type_node_id,
    parse_node_id,
    plugin_node_id,
)
from schema_porter.schema.document import ExportDocument
from schema_porter.schema.export_schema import ExportSchema
from schema_porter.schema.models import Appearance, Field, ItemType, Plugin
from schema_porter.schema.project import ProjectSchema
from schema_porter.tasks import Progress


# ============================================================================
# Helpers
# ============================================================================


def _item_type(item_type_id: str, name: str | None = None, is_block: bool = False) -> dict:
    return {
        "id": item_type_id,
        "type": "item_type",
        "attributes": {
            "name": name or item_type_id.title(),
            "api_key": item_type_id,
            "modular_block": is_block,
        },
        "relationships": {},
    }


def _link(field_id: str, owner: str, targets: list[str], editor: str = "link_select") -> dict:
    return {
        "id": field_id,
        "type": "field",
        "attributes": {
            "api_key": field_id,
            "label": field_id,
            "field_type": "link",
            "validators": {"item_item_type": {"item_types": targets}},
            "appearance": {"editor": editor, "parameters": {}, "addons": []},
        },
        "relationships": {"item_type": {"data": {"type": "item_type", "id": owner}}},
    }


def _make_mock_client(
    item_types: list[dict],
    fields: dict[str, list[dict]] | None = None,
    plugins: list[dict] | None = None,
) -> AsyncMock:
    """Create an AsyncMock SchemaClient over fixed resources."""
    fields = fields or {}
    client = AsyncMock()
    client.list_item_types = AsyncMock(return_value=item_types)
    client.list_plugins = AsyncMock(return_value=plugins or [])

    async def _list_fields(item_type_id):
        return fields.get(item_type_id, [])

    client.list_fields = AsyncMock(side_effect=_list_fields)
    client.list_fieldsets = AsyncMock(return_value=[])
    return client


def _blog_client() -> AsyncMock:
    """Post --author--> Person."""
    return _make_mock_client(
        [_item_type("post", "Post"), _item_type("person", "Person")],
        {"post": [_link("author", "post", ["person"])]},
    )


# ============================================================================
# Test: build_graph
# ============================================================================


class TestBuildGraph:
    """Graph discovery from seed item types."""

    @pytest.mark.asyncio
    async def test_post_links_person(self) -> None:
        project = ProjectSchema(_blog_client())

        graph = await build_graph(project, ["post"])

        assert graph.item_type_ids() == ["person", "post"]
        assert len(graph.edges) == 1
        edge = graph.edges[0]
        assert edge.id == "toItemType--post->person"
        assert edge.source == item_type_node_id("post")
        assert edge.target == item_type_node_id("person")
        assert [f.api_key for f in edge.fields] == ["author"]

    @pytest.mark.asyncio
    async def test_depth_and_order(self) -> None:
        graph = await build_graph(ProjectSchema(_blog_client()), ["post"])

        assert graph.item_type_node("post").depth == 0
        assert graph.item_type_node("person").depth == 1
        assert graph.item_type_node("person").order == 0

    @pytest.mark.asyncio
    async def test_edges_into_seed_not_drawn(self) -> None:
        client = _make_mock_client(
            [_item_type("post"), _item_type("person")],
            {
                "post": [_link("author", "post", ["person"])],
                "person": [_link("favorite", "person", ["post"])],
            },
        )

        graph = await build_graph(ProjectSchema(client), ["post"])

        assert [e.id for e in graph.edges] == ["toItemType--post->person"]

    @pytest.mark.asyncio
    async def test_cycle_terminates_without_duplicates(self) -> None:
        client = _make_mock_client(
            [_item_type("root"), _item_type("a"), _item_type("b")],
            {
                "root": [_link("to_a", "root", ["a"])],
                "a": [_link("to_b", "a", ["b"])],
                "b": [_link("to_a", "b", ["a"])],
            },
        )

        graph = await build_graph(ProjectSchema(client), ["root"])

        assert sorted(graph.item_type_ids()) == ["a", "b", "root"]
        assert count_cycles(graph) == 1

    @pytest.mark.asyncio
    async def test_aggregates_fields_per_target(self) -> None:
        client = _make_mock_client(
            [_item_type("post"), _item_type("person")],
            {"post": [_link("author", "post", ["person"]), _link("editor", "post", ["person"])]},
        )

        graph = await build_graph(ProjectSchema(client), ["post"])

        assert len(graph.edges) == 1
        assert [f.api_key for f in graph.edges[0].fields] == ["author", "editor"]

    @pytest.mark.asyncio
    async def test_plugin_nodes(self) -> None:
        client = _make_mock_client(
            [_item_type("post"), _item_type("person")],
            {"post": [_link("author", "post", ["person"], editor="picker")]},
            plugins=[{"id": "picker", "type": "plugin", "attributes": {"name": "Picker"}}],
        )

        graph = await build_graph(ProjectSchema(client), ["post"])

        assert graph.plugin_ids() == ["picker"]
        node = graph.node_by_id(plugin_node_id("picker"))
        assert node.depth == 1
        assert graph.nodes[-1].kind == "plugin"

    @pytest.mark.asyncio
    async def test_selection_flags_unselected_but_keeps_scanning(self) -> None:
        client = _make_mock_client(
            [_item_type("post"), _item_type("person"), _item_type("company")],
            {
                "post": [_link("author", "post", ["person"])],
                "person": [_link("employer", "person", ["company"])],
            },
        )

        graph = await build_graph(ProjectSchema(client), ["post"], selected_item_type_ids=["post"])

        assert graph.item_type_ids() == ["company", "person", "post"]
        assert graph.item_type_node("person").excluded is True
        assert graph.item_type_node("company").excluded is True
        assert graph.item_type_node("post").excluded is False
        assert [e.id for e in graph.edges] == ["toItemType--post->person"]

    @pytest.mark.asyncio
    async def test_skip_emits_node_without_edges(self) -> None:
        graph = await build_graph(
            ProjectSchema(_blog_client()), ["post"], item_type_ids_to_skip=["post"]
        )

        assert graph.item_type_ids() == ["post"]
        assert graph.edges == []

    @pytest.mark.asyncio
    async def test_deterministic(self) -> None:
        first = await build_graph(ProjectSchema(_blog_client()), ["post"])
        second = await build_graph(ProjectSchema(_blog_client()), ["post"])

        assert first.model_dump() == second.model_dump()

    @pytest.mark.asyncio
    async def test_progress_phases(self) -> None:
        updates: list[Progress] = []

        await build_graph(ProjectSchema(_blog_client()), ["post"], on_progress=updates.append)

        scan = [u for u in updates if u.phase == "scan"]
        build = [u for u in updates if u.phase == "build"]
        assert scan and all(u.done == 0 and u.total == 0 for u in scan)
        assert build[-1].done == build[-1].total == 2

    @pytest.mark.asyncio
    async def test_missing_link_target_raises(self) -> None:
        client = _make_mock_client([_item_type("post")], {"post": [_link("author", "post", ["ghost"])]})

        with pytest.raises(EntityNotFoundError):
            await build_graph(ProjectSchema(client), ["post"])

    @pytest.mark.asyncio
    async def test_remote_error_propagates(self) -> None:
        client = _blog_client()
        client.list_fields = AsyncMock(side_effect=RateLimitedError("slow down", status_code=429))

        with pytest.raises(RateLimitedError):
            await build_graph(ProjectSchema(client), ["post"])


class TestBuildGraphFromExport:
    @pytest.mark.asyncio
    async def test_rooted_at_document_root(self) -> None:
        doc = ExportDocument(
            root_item_type_id="post",
            entities=[
                ItemType(id="post", name="Post", api_key="post"),
                ItemType(id="person", name="Person", api_key="person"),
                Field(
                    id="author",
                    api_key="author",
                    field_type="link",
                    validators={"item_item_type": {"item_types": ["person"]}},
                    item_type_id="post",
                ),
            ],
        )

        graph = await build_graph_from_export(ExportSchema(doc))

        assert graph.item_type_node("post").depth == 0
        assert len(graph.edges) == 1


# ============================================================================
# Test: dependency expansion
# ============================================================================


class TestExpandSelection:
    """Transitive closure of a selection."""

    @pytest.mark.asyncio
    async def test_adds_linked_item_type(self) -> None:
        graph = await build_graph(ProjectSchema(_blog_client()), ["post"])

        expansion = expand_selection_with_dependencies(graph, ["post"], installed_plugin_ids=set())

        assert expansion.item_type_ids == ["post", "person"]
        assert expansion.added_item_type_ids == ["person"]

    @pytest.mark.asyncio
    async def test_idempotent(self) -> None:
        graph = await build_graph(ProjectSchema(_blog_client()), ["post"])
        first = expand_selection_with_dependencies(graph, ["post"], installed_plugin_ids=set())

        second = expand_selection_with_dependencies(
            graph, first.item_type_ids, first.plugin_ids, installed_plugin_ids=set()
        )

        assert second.is_fixed_point
        assert second.item_type_ids == first.item_type_ids

    @pytest.mark.asyncio
    async def test_closure_reaches_past_unselected_item_types(self) -> None:
        client = _make_mock_client(
            [_item_type("post"), _item_type("person"), _item_type("address"), _item_type("country")],
            {
                "post": [_link("author", "post", ["person"])],
                "person": [_link("home", "person", ["address"])],
                "address": [_link("country", "address", ["country"])],
                "country": [_link("capital", "country", ["address"])],
            },
        )
        graph = await build_graph(ProjectSchema(client), ["post"], selected_item_type_ids=["post"])

        expansion = expand_selection_with_dependencies(graph, ["post"], installed_plugin_ids=set())

        assert expansion.item_type_ids == ["post", "person", "address", "country"]
        assert expansion.added_item_type_ids == ["person", "address", "country"]
        again = expand_selection_with_dependencies(
            graph, expansion.item_type_ids, installed_plugin_ids=set()
        )
        assert again.is_fixed_point

    @pytest.mark.asyncio
    async def test_undo_removes_exactly_the_additions(self) -> None:
        graph = await build_graph(ProjectSchema(_blog_client()), ["post"])
        expansion = expand_selection_with_dependencies(graph, ["post"], installed_plugin_ids=set())

        item_type_ids, plugin_ids = remove_added_dependencies(
            expansion.item_type_ids, expansion.plugin_ids, expansion
        )

        assert item_type_ids == ["post"]
        assert plugin_ids == []

    def test_without_graph_returns_seeds(self) -> None:
        expansion = expand_selection_with_dependencies(None, ["post"], ["p1"])
        assert expansion.item_type_ids == ["post"]
        assert expansion.plugin_ids == ["p1"]
        assert expansion.is_fixed_point

    def test_installed_set_filters_plugins(self) -> None:
        field = Field(
            id="f",
            api_key="rating",
            field_type="integer",
            appearance=Appearance(editor="stars", addons=[{"id": "notes"}]),
            item_type_id="post",
        )
        graph = Graph(
            nodes=[
                ItemTypeNode(
                    id=item_type_node_id("post"),
                    item_type=ItemType(id="post", name="Post", api_key="post"),
                    fields=[field],
                )
            ]
        )

        expansion = expand_selection_with_dependencies(graph, ["post"], installed_plugin_ids={"stars"})

        assert expansion.plugin_ids == ["stars"]


# ============================================================================
# Test: analysis
# ============================================================================


def _graph(node_ids: list[str], pairs: list[tuple[str, str]]) -> Graph:
    nodes = []
    for node_id in node_ids:
        kind, entity_id = parse_node_id(node_id)
        if kind == "item_type":
            nodes.append(
                ItemTypeNode(id=node_id, item_type=ItemType(id=entity_id, name=entity_id, api_key=entity_id))
            )
        else:
            nodes.append(PluginNode(id=node_id, plugin=Plugin(id=entity_id, name=entity_id)))
    edges = [Edge(id=f"{s}->{t}", source=s, target=t) for s, t in pairs]
    return Graph(nodes=nodes, edges=edges)


class TestAnalysis:
    """Connected components, cycles and edge lookups."""

    def test_connected_components(self) -> None:
        a, b, c = item_type_node_id("a"), item_type_node_id("b"), item_type_node_id("c")
        graph = _graph([a, b, c], [(a, b)])

        components = get_connected_components(graph)

        assert sorted(sorted(c) for c in components) == [sorted([a, b]), [c]]

    def test_strongly_connected_components(self) -> None:
        a, b, c = item_type_node_id("a"), item_type_node_id("b"), item_type_node_id("c")
        graph = _graph([a, b, c], [(a, b), (b, a), (b, c)])

        components = get_strongly_connected_components(graph)

        assert sorted(len(c) for c in components) == [1, 2]
        assert count_cycles(graph) == 1

    def test_acyclic(self) -> None:
        a, b = item_type_node_id("a"), item_type_node_id("b")
        assert count_cycles(_graph([a, b], [(a, b)])) == 0

    def test_edge_lookups_and_split(self) -> None:
        a, b, p = item_type_node_id("a"), item_type_node_id("b"), plugin_node_id("p")
        graph = _graph([a, b, p], [(a, b), (a, p), (b, p)])

        assert len(find_outbound_edges(graph, a)) == 2
        assert len(find_inbound_edges(graph, p)) == 2
        assert len(find_inbound_edges(graph, p, source_whitelist={b})) == 1
        item_type_nodes, plugin_nodes = split_nodes_by_kind(graph)
        assert len(item_type_nodes) == 2
        assert len(plugin_nodes) == 1

    def test_parse_node_id(self) -> None:
        assert parse_node_id("itemType--42") == ("item_type", "42")
        assert parse_node_id("plugin--7") == ("plugin", "7")
        with pytest.raises(ValueError):
            parse_node_id("menu--1")
