from __future__ import annotations

import dataclasses

import pytest

from creative_canvas.canvas.graph import GraphStore, IdGenerator
from creative_canvas.canvas.models import Node, NodeData, NodeStatus, NodeType, Position, edge_between
from creative_canvas.errors import HasDownstreamDependents, InvalidInput, NodeNotFound


def _product(node_id: str = "product-1") -> Node:
    return Node(
        id=node_id,
        type=NodeType.PRODUCT,
        position=Position(400, 100),
        data=NodeData(title="Sneaker", status=NodeStatus.COMPLETED, image_url="data:image/png;base64,AAAA"),
    )


def _concept(node_id: str, parent: str = "product-1") -> Node:
    return Node(
        id=node_id,
        type=NodeType.CONCEPT,
        position=Position(400, 500),
        data=NodeData(title="Hero", content="hero shot", concept="Hero", parent_product_id=parent),
    )


@pytest.fixture
def graph() -> GraphStore:
    g = GraphStore()
    g.add_many([_product(), _concept("concept-1"), _concept("concept-2")], [
        edge_between("product-1", "concept-1"),
        edge_between("product-1", "concept-2"),
    ])
    return g


def test_ids_differ_within_the_same_millisecond():
    ids = IdGenerator(clock=lambda: 1.0)
    assert ids("concept") == "concept-1000-0"
    assert ids("concept") == "concept-1000-1"


def test_add_node_rejects_duplicate_id(graph):
    with pytest.raises(InvalidInput):
        graph.add_node(_product())


@pytest.mark.parametrize(
    "data",
    [
        NodeData(title="orphan"),
        NodeData(title="both", parent_product_id="product-1", parent_generated_id="creative-1"),
    ],
)
def test_concept_needs_exactly_one_parent(graph, data):
    node = Node(id="concept-x", type=NodeType.CONCEPT, position=Position(0, 0), data=data)
    with pytest.raises(InvalidInput):
        graph.add_node(node)
    assert graph.find("concept-x") is None


def test_add_many_is_atomic(graph):
    before_nodes, before_edges = graph.nodes, graph.edges
    with pytest.raises(InvalidInput):
        graph.add_many([_concept("concept-3"), _concept("concept-1")], [edge_between("product-1", "concept-3")])
    assert graph.nodes == before_nodes
    assert graph.edges == before_edges


def test_delete_with_downstream_edges_is_refused_and_changes_nothing(graph):
    before_nodes, before_edges = graph.nodes, graph.edges

    with pytest.raises(HasDownstreamDependents) as excinfo:
        graph.delete_node("product-1")

    assert excinfo.value.node_id == "product-1"
    assert sorted(excinfo.value.dependents) == ["concept-1", "concept-2"]
    assert "Sneaker" in str(excinfo.value)
    assert graph.nodes == before_nodes
    assert graph.edges == before_edges


def test_delete_leaf_removes_its_edges(graph):
    removed = graph.delete_node("concept-1")

    assert removed.id == "concept-1"
    assert graph.find("concept-1") is None
    assert all("concept-1" not in (e.source, e.target) for e in graph.edges)
    assert [e.target for e in graph.outgoing("product-1")] == ["concept-2"]


def test_delete_after_children_are_gone(graph):
    graph.delete_node("concept-1")
    graph.delete_node("concept-2")
    graph.delete_node("product-1")
    assert graph.nodes == []
    assert graph.edges == []


def test_unknown_node_raises_not_found(graph):
    with pytest.raises(NodeNotFound) as excinfo:
        graph.delete_node("nope")
    assert excinfo.value.node_id == "nope"
    with pytest.raises(NodeNotFound):
        graph.update_node_data("nope", status=NodeStatus.ERROR)


def test_updates_replace_nodes_instead_of_mutating(graph):
    original = graph.get("concept-1")
    updated = graph.update_node_data("concept-1", status="generating")

    assert updated.status == NodeStatus.GENERATING
    assert original.status == NodeStatus.IDLE
    with pytest.raises(dataclasses.FrozenInstanceError):
        original.data.title = "changed"  # type: ignore[misc]


def test_unknown_status_is_invalid_input(graph):
    with pytest.raises(InvalidInput, match="sleeping"):
        graph.update_node_data("concept-1", status="sleeping")
    assert graph.get("concept-1").status == NodeStatus.IDLE


def test_unknown_update_keys_are_kept_in_extra(graph):
    node = graph.update_node_data("concept-1", color="red")
    assert node.data.extra == {"color": "red"}


def test_title_edit_keeps_concept_label_in_step(graph):
    concept = graph.update_title("concept-1", "Lifestyle")
    product = graph.update_title("product-1", "Runner")

    assert concept.data.title == "Lifestyle"
    assert concept.data.concept == "Lifestyle"
    assert product.data.title == "Runner"
    assert product.data.concept is None


def test_content_edit_clears_auto_edit(graph):
    graph.update_node_data("concept-1", auto_edit=True)
    node = graph.update_content("concept-1", "a new prompt", title="Beach")

    assert node.data.content == "a new prompt"
    assert node.data.title == "Beach"
    assert node.data.concept == "Beach"
    assert node.data.auto_edit is False


def test_move_node(graph):
    node = graph.move_node("concept-2", 10, 20)
    assert node.position == Position(10, 20)


def test_children_and_parents(graph):
    assert {n.id for n in graph.children("product-1")} == {"concept-1", "concept-2"}
    assert [n.id for n in graph.parents("concept-1")] == ["product-1"]


def test_listeners_see_changes_until_unsubscribed(graph):
    seen = []
    unsubscribe = graph.subscribe(seen.append)

    graph.update_title("concept-1", "Moody")
    graph.delete_node("concept-1")
    unsubscribe()
    graph.delete_node("concept-2")

    assert [(c.kind, c.node_ids) for c in seen] == [("update", ("concept-1",)), ("delete", ("concept-1",))]
