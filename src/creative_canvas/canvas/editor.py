from __future__ import annotations

import asyncio
import logging
from typing import Any

from creative_canvas.canvas import layout
from creative_canvas.canvas.analysis import AnalysisSessionController, AnalysisTiming, AnalyzerFactory, Sleep
from creative_canvas.canvas.generation import GenerationWorkflow, GeneratorFactory, PostProcessor
from creative_canvas.canvas.graph import GraphStore, IdGenerator
from creative_canvas.canvas.lineage import product_image_for_creative
from creative_canvas.canvas.models import Node, NodeData, NodeStatus, NodeType, edge_between
from creative_canvas.errors import InvalidInput, SessionActive
from creative_canvas.storage import ProjectDocument, dump_project

logger = logging.getLogger(__name__)

NEW_CONCEPT_TITLE = "New Concept"
NEW_CONCEPT_CONTENT = "Enter concept description..."


class Canvas:
    """
    One editing canvas: the graph plus the two workflows that write to it.

    Presentation layers call these methods directly; nothing here assumes an
    event bus or UI callbacks stored on nodes.
    """

    def __init__(
        self,
        analyzer_factory: AnalyzerFactory,
        generator_factory: GeneratorFactory,
        project_name: str = "",
        timing: AnalysisTiming | None = None,
        sleep: Sleep = asyncio.sleep,
        post_processor: PostProcessor | None = None,
    ) -> None:
        self.project_name = project_name
        self.graph = GraphStore()
        self.ids = IdGenerator()
        self.analysis = AnalysisSessionController(
            self.graph,
            self.ids,
            analyzer_factory,
            timing=timing,
            sleep=sleep,
        )
        self.generation = GenerationWorkflow(
            self.graph,
            self.ids,
            generator_factory,
            sleep=sleep,
            post_processor=post_processor,
        )

    # -- concept creation --

    def add_concept_from_product(self, product_id: str) -> Node:
        product = self._require(product_id, NodeType.PRODUCT)
        siblings = [
            n for n in self.graph.by_type(NodeType.CONCEPT) if n.data.parent_product_id == product_id
        ]
        concept = Node(
            id=self.ids("concept"),
            type=NodeType.CONCEPT,
            position=layout.concept_position(product.position, len(siblings)),
            data=NodeData(
                title=NEW_CONCEPT_TITLE,
                content=NEW_CONCEPT_CONTENT,
                concept=NEW_CONCEPT_TITLE,
                status=NodeStatus.IDLE,
                auto_edit=True,
                parent_product_id=product_id,
                parent_product_image_url=product.data.image_url,
            ),
        )
        self.graph.add_many([concept], [edge_between(product_id, concept.id)])
        return concept

    def add_concept_from_creative(self, creative_id: str) -> Node:
        creative = self._require(creative_id, NodeType.CREATIVE)
        if not creative.data.image_url:
            raise InvalidInput("the creative has no generated image yet")

        concept = Node(
            id=self.ids("concept"),
            type=NodeType.CONCEPT,
            position=layout.below(creative.position),
            data=NodeData(
                title=NEW_CONCEPT_TITLE,
                content=NEW_CONCEPT_CONTENT,
                concept=NEW_CONCEPT_TITLE,
                status=NodeStatus.IDLE,
                auto_edit=True,
                parent_generated_id=creative_id,
                parent_generated_image_url=creative.data.image_url,
                parent_product_image_url=product_image_for_creative(creative, self.graph),
            ),
        )
        self.graph.add_many([concept], [edge_between(creative_id, concept.id)])
        return concept

    def add_concept_from_insight(self, name: str, summary: str | None = None) -> Node:
        """Concept picked from the knowledge graph; images generated from it carry no text."""
        if not name.strip():
            raise InvalidInput("an insight needs a name")
        products = self.graph.by_type(NodeType.PRODUCT)
        if not products:
            raise InvalidInput("upload a product image first")
        product = products[0]
        existing = [n for n in self.graph.by_type(NodeType.CONCEPT) if n.data.from_knowledge_graph]

        concept = Node(
            id=self.ids("concept-kg"),
            type=NodeType.CONCEPT,
            position=layout.insight_position(len(existing)),
            data=NodeData(
                title=name,
                content=summary or f"Based on knowledge graph node: {name}",
                concept=name,
                status=NodeStatus.IDLE,
                from_knowledge_graph=True,
                parent_product_id=product.id,
                parent_product_image_url=product.data.image_url,
            ),
        )
        self.graph.add_many([concept], [edge_between(product.id, concept.id)])
        logger.info("added knowledge graph concept '%s'", name)
        return concept

    # -- editing --

    def delete_node(self, node_id: str) -> Node:
        return self.graph.delete_node(node_id)

    def update_title(self, node_id: str, title: str) -> Node:
        return self.graph.update_title(node_id, title)

    def update_content(self, node_id: str, content: str, title: str | None = None) -> Node:
        return self.graph.update_content(node_id, content, title)

    def rename(self, project_name: str) -> None:
        name = project_name.strip()
        if not name:
            raise InvalidInput("project name cannot be empty")
        self.project_name = name

    def snapshot(self) -> dict[str, Any]:
        return dump_project(self)

    def restore(self, document: ProjectDocument) -> None:
        """Replace the whole graph with a loaded project."""
        if self.analysis.is_analyzing:
            raise SessionActive()
        self.graph.replace_all(document.nodes, document.edges)
        if document.name:
            self.project_name = document.name
        logger.info("loaded project '%s' with %d node(s)", self.project_name, len(document.nodes))

    def _require(self, node_id: str, node_type: NodeType) -> Node:
        node = self.graph.get(node_id)
        if node.type != node_type:
            raise InvalidInput(f"node '{node_id}' is a {node.type.value}, not a {node_type.value}")
        return node
