from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import httpx

from creative_canvas.assembly.images import load_payload
from creative_canvas.canvas import layout
from creative_canvas.canvas.graph import GraphStore, IdGenerator
from creative_canvas.canvas.models import (
    ImagePayload,
    Node,
    NodeData,
    NodeStatus,
    NodeType,
    edge_between,
)
from creative_canvas.config import settings
from creative_canvas.errors import (
    CanvasError,
    InvalidInput,
    MissingCredential,
    SessionActive,
    SessionCancelled,
    UpstreamFailure,
    UpstreamTimeout,
)
from creative_canvas.providers.base import ImageAnalyzer, ProductAnalysis, ReasoningStep, default_analysis

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    AWAITING_STEPS = "awaiting_steps"
    REVEALING_STEP = "revealing_step"
    COMMITTING = "committing"
    FAILED = "failed"


@dataclass(frozen=True)
class AnalysisTiming:
    start_delay: float = 0.1
    step_delay: float = 1.5
    final_delay: float = 3.0
    timeout: float = 30.0

    @classmethod
    def from_settings(cls) -> AnalysisTiming:
        return cls(
            start_delay=settings.reveal_start_delay_s,
            step_delay=settings.reveal_step_delay_s,
            final_delay=settings.reveal_final_delay_s,
            timeout=settings.analysis_timeout_s,
        )


@dataclass
class AnalysisSession:
    title: str
    language: str
    state: SessionState = SessionState.IDLE
    steps: list[ReasoningStep] = field(default_factory=list)
    current_step: int = -1
    error: str | None = None


@dataclass(frozen=True)
class AnalysisEvent:
    state: SessionState
    step_index: int | None = None
    step: ReasoningStep | None = None
    message: str | None = None


AnalysisListener = Callable[[AnalysisEvent], None]
AnalyzerFactory = Callable[[str], ImageAnalyzer]
Sleep = Callable[[float], Awaitable[None]]
ImageSource = ImagePayload | str | bytes


async def analyze_with_deadline(
    analyzer: ImageAnalyzer,
    payload: ImagePayload,
    language: str,
    model: str | None,
    *,
    timeout: float,
    fallback: bool = False,
) -> ProductAnalysis:
    """Run the analyzer under a deadline; on expiry fail, or return the stock concepts when `fallback` is set."""
    try:
        return await asyncio.wait_for(analyzer.analyze_product(payload, language, model), timeout=timeout)
    except asyncio.TimeoutError:
        if fallback:
            logger.warning("analysis timed out after %gs, using the default concepts", timeout)
            return default_analysis(language)
        raise UpstreamTimeout(f"Analysis did not finish within {timeout:g} seconds") from None


class AnalysisSessionController:
    """
    Runs one product analysis at a time for a canvas.

    The analyzer result arrives in one call; the reasoning steps are then
    revealed one by one on a timer, and only after the last one has been shown
    are the product and concept nodes committed to the graph. A failure at any
    point leaves the graph untouched.
    """

    def __init__(
        self,
        graph: GraphStore,
        ids: IdGenerator,
        analyzer_factory: AnalyzerFactory,
        timing: AnalysisTiming | None = None,
        sleep: Sleep = asyncio.sleep,
        timeout_fallback: bool | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._graph = graph
        self._ids = ids
        self._analyzer_factory = analyzer_factory
        self.timing = timing or AnalysisTiming.from_settings()
        self._sleep = sleep
        self._timeout_fallback = settings.analysis_timeout_fallback if timeout_fallback is None else timeout_fallback
        self.http_client = http_client
        self._listeners: list[AnalysisListener] = []
        self._session: AnalysisSession | None = None
        self._task: asyncio.Task[list[Node]] | None = None
        self._cancel_requested = False

    @property
    def is_analyzing(self) -> bool:
        return self._task is not None

    @property
    def session(self) -> AnalysisSession | None:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.IDLE

    def subscribe(self, listener: AnalysisListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def submit(
        self,
        image: ImageSource | None,
        *,
        api_key: str | None,
        language: str,
        title: str | None = None,
        model: str | None = None,
    ) -> list[Node]:
        """
        Analyze `image` and commit the product node plus one concept per suggestion.

        Returns the committed nodes, product first.
        """
        if not api_key:
            raise MissingCredential()
        if not image:
            raise InvalidInput("no product image provided")
        if self._task is not None:
            raise SessionActive()

        self._cancel_requested = False
        self._session = AnalysisSession(title=title or "Product Image", language=language)
        self._task = asyncio.ensure_future(self._run(self._session, image, api_key, language, model))
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise SessionCancelled() from None
            raise
        finally:
            self._task = None
            self._session = None

    def cancel(self) -> bool:
        """Abort the running session; pending reveal timers never fire."""
        if self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        self._task.cancel()
        return True

    async def _run(
        self,
        session: AnalysisSession,
        image: ImageSource,
        api_key: str,
        language: str,
        model: str | None,
    ) -> list[Node]:
        try:
            self._enter(SessionState.SUBMITTING)
            payload = await self._inline(image)
            analysis = await analyze_with_deadline(
                self._analyzer_factory(api_key),
                payload,
                language,
                model,
                timeout=self.timing.timeout,
                fallback=self._timeout_fallback,
            )

            session.steps = list(analysis.reasoning_steps)
            self._enter(SessionState.AWAITING_STEPS)
            if session.steps:
                await self._sleep(self.timing.start_delay)
                for idx, step in enumerate(session.steps):
                    session.current_step = idx
                    self._enter(SessionState.REVEALING_STEP, step_index=idx, step=step)
                    await self._sleep(self.timing.step_delay)
                # Let the user read the last step before the overlay closes.
                await self._sleep(self.timing.final_delay)

            self._enter(SessionState.COMMITTING)
            created = self._commit(payload, analysis, session.title)
        except asyncio.CancelledError:
            self._fail("Analysis cancelled")
            raise
        except CanvasError as exc:
            self._fail(str(exc))
            raise
        except Exception as exc:
            logger.exception("product analysis failed")
            self._fail(f"Analysis failed: {exc}")
            raise UpstreamFailure(f"Analysis failed: {exc}") from exc

        logger.info("analysis committed %d node(s) for '%s'", len(created), session.title)
        self._enter(SessionState.IDLE)
        return created

    async def _inline(self, image: ImageSource) -> ImagePayload:
        if isinstance(image, ImagePayload):
            return image
        if isinstance(image, bytes):
            return ImagePayload.from_bytes(image)
        return await load_payload(image, client=self.http_client)

    def _commit(self, payload: ImagePayload, analysis: ProductAnalysis, title: str) -> list[Node]:
        image_url = payload.to_data_url()
        product_id = self._ids("product")
        product = Node(
            id=product_id,
            type=NodeType.PRODUCT,
            position=layout.product_position(len(self._graph.by_type(NodeType.PRODUCT))),
            data=NodeData(
                title=title,
                content=analysis.summary or "Product analyzed",
                status=NodeStatus.COMPLETED,
                image_url=image_url,
            ),
        )

        nodes = [product]
        edges = []
        for idx, suggestion in enumerate(analysis.concepts):
            concept = Node(
                id=self._ids("concept"),
                type=NodeType.CONCEPT,
                position=layout.concept_position(product.position, idx),
                data=NodeData(
                    title=suggestion.concept,
                    content=suggestion.prompt,
                    concept=suggestion.concept,
                    status=NodeStatus.COMPLETED,
                    parent_product_id=product_id,
                    parent_product_image_url=image_url,
                    extra={"rationale": suggestion.rationale} if suggestion.rationale else {},
                ),
            )
            nodes.append(concept)
            edges.append(edge_between(product_id, concept.id))

        self._graph.add_many(nodes, edges)
        return nodes

    def _enter(
        self,
        state: SessionState,
        step_index: int | None = None,
        step: ReasoningStep | None = None,
        message: str | None = None,
    ) -> None:
        if self._session is not None:
            self._session.state = state
        event = AnalysisEvent(state=state, step_index=step_index, step=step, message=message)
        for listener in list(self._listeners):
            listener(event)

    def _fail(self, message: str) -> None:
        logger.warning("analysis session failed: %s", message)
        if self._session is not None:
            self._session.error = message
        self._enter(SessionState.FAILED, message=message)
        self._enter(SessionState.IDLE)
