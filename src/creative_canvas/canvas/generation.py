from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from creative_canvas.assembly.images import load_payload
from creative_canvas.canvas import layout
from creative_canvas.canvas.graph import GraphStore, IdGenerator
from creative_canvas.canvas.lineage import LineageInputs, resolve_lineage
from creative_canvas.canvas.models import ImagePayload, Node, NodeData, NodeStatus, NodeType, edge_between
from creative_canvas.config import settings
from creative_canvas.errors import CanvasError, InvalidInput, MissingCredential, UpstreamFailure
from creative_canvas.providers.base import ImageGenerator

logger = logging.getLogger(__name__)

NO_TEXT_INSTRUCTION = (
    "\n\nImportant: The generated image content must not contain any text (including Chinese, "
    "English or other languages), please only use visual elements, images, symbols, no text content."
)

GeneratorFactory = Callable[[str], ImageGenerator]
PostProcessor = Callable[[ImagePayload, str], ImagePayload]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PendingGeneration:
    concept_id: str
    creative_id: str
    prompt: str
    lineage: LineageInputs
    api_key: str = field(repr=False)
    model: str | None = None


@dataclass(frozen=True)
class GenerationOutcome:
    concept_id: str
    creative_id: str
    status: NodeStatus
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == NodeStatus.COMPLETED


def build_prompt(concept: Node) -> str:
    prompt = concept.data.content.strip()
    if concept.data.from_knowledge_graph:
        prompt += NO_TEXT_INSTRUCTION
    return prompt


class GenerationWorkflow:
    """Turns one concept node into one creative node through the image generator."""

    def __init__(
        self,
        graph: GraphStore,
        ids: IdGenerator,
        generator_factory: GeneratorFactory,
        aspect_ratio: str | None = None,
        highlight_delay: float | None = None,
        sleep: Sleep = asyncio.sleep,
        post_processor: PostProcessor | None = None,
    ) -> None:
        self._graph = graph
        self._ids = ids
        self._generator_factory = generator_factory
        self.aspect_ratio = aspect_ratio or settings.generation_aspect_ratio
        self.highlight_delay = settings.highlight_delay_s if highlight_delay is None else highlight_delay
        self._sleep = sleep
        self._post_processor = post_processor
        self._highlights: set[asyncio.Task[None]] = set()

    def begin(self, concept_id: str, *, api_key: str | None, model: str | None = None) -> PendingGeneration:
        """
        Synchronous half of a generation: validate, mark the concept as
        generating and put the placeholder creative on the canvas.
        """
        if not api_key:
            raise MissingCredential()
        concept = self._graph.get(concept_id)
        if concept.type != NodeType.CONCEPT:
            raise InvalidInput(f"node '{concept_id}' is a {concept.type.value}, not a concept")
        if not concept.data.content.strip():
            raise InvalidInput("the concept has no prompt text")

        self._graph.update_node_data(concept_id, status=NodeStatus.GENERATING)

        label = concept.data.concept or concept.data.title
        creative = Node(
            id=self._ids("creative"),
            type=NodeType.CREATIVE,
            position=layout.below(concept.position),
            data=NodeData(
                title=f"{label} Creative",
                content=concept.data.content,
                concept=label,
                status=NodeStatus.GENERATING,
                parent_concept_id=concept_id,
            ),
        )
        self._graph.add_many([creative], [edge_between(concept_id, creative.id)])

        lineage = resolve_lineage(concept, self._graph)
        logger.info(
            "generating %s from %s (product image: %s, prior generation: %s)",
            creative.id,
            concept_id,
            "yes" if lineage.product_image_url else "no",
            "yes" if lineage.generated_image_url else "no",
        )
        return PendingGeneration(
            concept_id=concept_id,
            creative_id=creative.id,
            prompt=build_prompt(concept),
            lineage=lineage,
            api_key=api_key,
            model=model,
        )

    async def complete(self, pending: PendingGeneration) -> GenerationOutcome:
        try:
            references = [await load_payload(url) for url in pending.lineage.reference_urls]
            generator = self._generator_factory(pending.api_key)
            image = await generator.generate_creative(
                pending.prompt,
                references,
                self.aspect_ratio,
                pending.model,
            )
            if image is None or not image.data_b64:
                raise UpstreamFailure("The generator returned no image")
            if self._post_processor is not None:
                image = self._post_processor(image, self.aspect_ratio)
        except asyncio.CancelledError:
            self._mark_failed(pending)
            raise
        except Exception as exc:
            message = str(exc) if isinstance(exc, CanvasError) else f"Generation failed: {exc}"
            logger.warning("generation of %s failed: %s", pending.creative_id, message)
            self._mark_failed(pending)
            return GenerationOutcome(pending.concept_id, pending.creative_id, NodeStatus.ERROR, message)

        self._update_if_present(
            pending.creative_id,
            image_url=image.to_data_url(),
            status=NodeStatus.COMPLETED,
            just_completed=True,
        )
        self._update_if_present(pending.concept_id, status=NodeStatus.COMPLETED)
        self._schedule_highlight_clear(pending.creative_id)
        return GenerationOutcome(pending.concept_id, pending.creative_id, NodeStatus.COMPLETED)

    async def generate(self, concept_id: str, *, api_key: str | None, model: str | None = None) -> GenerationOutcome:
        return await self.complete(self.begin(concept_id, api_key=api_key, model=model))

    async def wait_highlights(self) -> None:
        if self._highlights:
            await asyncio.gather(*list(self._highlights))

    def _mark_failed(self, pending: PendingGeneration) -> None:
        # The placeholder stays on the canvas as a record of the attempt.
        self._update_if_present(pending.creative_id, status=NodeStatus.ERROR)
        self._update_if_present(pending.concept_id, status=NodeStatus.IDLE)

    def _update_if_present(self, node_id: str, **updates) -> None:
        if self._graph.find(node_id) is None:
            logger.info("node %s was deleted while generating; skipping update", node_id)
            return
        self._graph.update_node_data(node_id, **updates)

    def _schedule_highlight_clear(self, creative_id: str) -> None:
        task = asyncio.ensure_future(self._clear_highlight(creative_id))
        self._highlights.add(task)
        task.add_done_callback(self._highlights.discard)

    async def _clear_highlight(self, creative_id: str) -> None:
        await self._sleep(self.highlight_delay)
        node = self._graph.find(creative_id)
        if node is not None and node.data.just_completed:
            self._graph.update_node_data(creative_id, just_completed=False)
