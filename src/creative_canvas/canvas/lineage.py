from __future__ import annotations

from dataclasses import dataclass

from creative_canvas.canvas.graph import GraphStore
from creative_canvas.canvas.models import Node, NodeType


@dataclass(frozen=True)
class LineageInputs:
    product_image_url: str | None
    generated_image_url: str | None

    @property
    def reference_urls(self) -> list[str]:
        """Product reference first, then the prior generation."""
        return [u for u in (self.product_image_url, self.generated_image_url) if u]


def first_product_image(graph: GraphStore) -> str | None:
    for node in graph.nodes:
        if node.type == NodeType.PRODUCT and node.data.image_url:
            return node.data.image_url
    return None


def resolve_lineage(concept: Node, graph: GraphStore) -> LineageInputs:
    """
    Pick the reference images for generating from `concept`.

    Cached ancestor URLs on the concept win. Concepts without a cached product
    image (older projects) fall back to any product on the canvas; there is no
    fallback for the prior generated image.
    """
    product_image = concept.data.parent_product_image_url or first_product_image(graph)
    generated_image = concept.data.parent_generated_image_url or None
    return LineageInputs(product_image_url=product_image or None, generated_image_url=generated_image)


def product_image_for_creative(creative: Node, graph: GraphStore) -> str | None:
    parent_id = creative.data.parent_concept_id
    if parent_id:
        parent = graph.find(parent_id)
        if parent is not None and parent.data.parent_product_image_url:
            return parent.data.parent_product_image_url
    return first_product_image(graph)
