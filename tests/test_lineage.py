from __future__ import annotations

from creative_canvas.canvas.graph import GraphStore
from creative_canvas.canvas.lineage import product_image_for_creative, resolve_lineage
from creative_canvas.canvas.models import Node, NodeData, NodeStatus, NodeType, Position

PRODUCT_URL = "data:image/png;base64,UFJPRFVDVA=="
OTHER_PRODUCT_URL = "data:image/png;base64,T1RIRVI="
CREATIVE_URL = "data:image/png;base64,Q1JFQVRJVkU="


def _node(node_id, node_type, **data) -> Node:
    return Node(id=node_id, type=node_type, position=Position(0, 0), data=NodeData(**data))


def _graph(*nodes: Node) -> GraphStore:
    g = GraphStore()
    g.replace_all(nodes, [])
    return g


def test_cached_product_image_wins():
    graph = _graph(_node("product-1", NodeType.PRODUCT, image_url=OTHER_PRODUCT_URL))
    concept = _node(
        "concept-1", NodeType.CONCEPT, parent_product_id="product-1", parent_product_image_url=PRODUCT_URL
    )

    lineage = resolve_lineage(concept, graph)

    assert lineage.product_image_url == PRODUCT_URL
    assert lineage.generated_image_url is None
    assert lineage.reference_urls == [PRODUCT_URL]


def test_missing_cache_falls_back_to_first_product():
    graph = _graph(
        _node("product-1", NodeType.PRODUCT, image_url=PRODUCT_URL),
        _node("product-2", NodeType.PRODUCT, image_url=OTHER_PRODUCT_URL),
    )
    concept = _node("concept-1", NodeType.CONCEPT, parent_product_id="product-2")

    assert resolve_lineage(concept, graph).product_image_url == PRODUCT_URL


def test_derived_concept_orders_product_before_generation():
    graph = _graph(_node("product-1", NodeType.PRODUCT, image_url=PRODUCT_URL))
    concept = _node(
        "concept-2",
        NodeType.CONCEPT,
        parent_generated_id="creative-1",
        parent_generated_image_url=CREATIVE_URL,
        parent_product_image_url=PRODUCT_URL,
    )

    assert resolve_lineage(concept, graph).reference_urls == [PRODUCT_URL, CREATIVE_URL]


def test_no_references_when_nothing_is_available():
    concept = _node("concept-1", NodeType.CONCEPT, parent_product_id="product-1")
    lineage = resolve_lineage(concept, GraphStore())
    assert lineage.reference_urls == []


def test_cached_url_is_not_refreshed_when_the_product_changes():
    graph = _graph(_node("product-1", NodeType.PRODUCT, image_url=PRODUCT_URL))
    concept = _node(
        "concept-1", NodeType.CONCEPT, parent_product_id="product-1", parent_product_image_url=PRODUCT_URL
    )
    graph.update_node_data("product-1", image_url=OTHER_PRODUCT_URL)

    assert resolve_lineage(concept, graph).product_image_url == PRODUCT_URL


def test_product_image_for_creative_uses_parent_concept_cache():
    graph = _graph(
        _node("product-1", NodeType.PRODUCT, image_url=OTHER_PRODUCT_URL),
        _node("concept-1", NodeType.CONCEPT, parent_product_id="product-1", parent_product_image_url=PRODUCT_URL),
    )
    creative = _node("creative-1", NodeType.CREATIVE, parent_concept_id="concept-1", status=NodeStatus.COMPLETED)

    assert product_image_for_creative(creative, graph) == PRODUCT_URL


def test_product_image_for_creative_without_parent_falls_back():
    graph = _graph(_node("product-1", NodeType.PRODUCT, image_url=PRODUCT_URL))
    creative = _node("creative-1", NodeType.CREATIVE)

    assert product_image_for_creative(creative, graph) == PRODUCT_URL


def test_resolving_twice_gives_the_same_answer_and_leaves_the_graph_alone():
    graph = _graph(
        _node("product-1", NodeType.PRODUCT, image_url=PRODUCT_URL),
        _node("concept-1", NodeType.CONCEPT, parent_product_id="product-1"),
    )
    concept = _node(
        "concept-2",
        NodeType.CONCEPT,
        parent_generated_id="creative-1",
        parent_generated_image_url=CREATIVE_URL,
    )
    nodes_before, edges_before = graph.nodes, graph.edges

    first = resolve_lineage(concept, graph)
    second = resolve_lineage(concept, graph)

    assert first == second
    assert first.reference_urls == [PRODUCT_URL, CREATIVE_URL]
    assert graph.nodes == nodes_before
    assert graph.edges == edges_before
