from __future__ import annotations

import asyncio
import os
import tempfile
from io import BytesIO

# Keep imports of the app from touching the working directory or a developer's key.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="creative-canvas-"))
os.environ["GEMINI_API_KEY"] = ""

import pytest
from PIL import Image

from creative_canvas.canvas.analysis import AnalysisTiming
from creative_canvas.canvas.editor import Canvas
from creative_canvas.canvas.models import ImagePayload
from creative_canvas.providers.base import ConceptSuggestion, ProductAnalysis, ReasoningStep


def png_payload(width: int = 8, height: int = 8, color=(200, 30, 30)) -> ImagePayload:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return ImagePayload.from_bytes(buf.getvalue(), mime_type="image/png")


def sample_analysis(steps: int = 5, concepts: int = 5) -> ProductAnalysis:
    return ProductAnalysis(
        reasoning_steps=[ReasoningStep(step=f"Step {i}", analysis=f"analysis {i}") for i in range(steps)],
        concepts=[
            ConceptSuggestion(concept=f"Concept {i}", prompt=f"prompt for concept {i}", rationale=f"why {i}")
            for i in range(concepts)
        ],
        summary="sneaker",
        product_type="sneaker",
    )


class FakeAnalyzer:
    name = "fake"

    def __init__(self, result: ProductAnalysis | None = None, error: Exception | None = None) -> None:
        self.result = result if result is not None else sample_analysis()
        self.error = error
        self.gate: asyncio.Event | None = None
        self.delay = 0.0
        self.calls: list[dict] = []

    async def analyze_product(self, image, language, model=None):
        self.calls.append({"image": image, "language": language, "model": model})
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeGenerator:
    name = "fake"

    def __init__(self, image: ImagePayload | None = None, error: Exception | None = None) -> None:
        self.image = image if image is not None else png_payload(color=(10, 200, 10))
        self.error = error
        self.calls: list[dict] = []

    async def generate_creative(self, prompt, reference_images, aspect_ratio, model=None, **kwargs):
        self.calls.append(
            {
                "prompt": prompt,
                "references": list(reference_images),
                "aspect_ratio": aspect_ratio,
                "model": model,
                **kwargs,
            }
        )
        if self.error is not None:
            raise self.error
        return self.image


class RecordingSleep:
    """Stands in for asyncio.sleep: records the delay and only yields to the loop."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def canvas(analyzer, generator, sleep) -> Canvas:
    return Canvas(
        analyzer_factory=lambda key: analyzer,
        generator_factory=lambda key: generator,
        project_name="Spring Launch",
        timing=AnalysisTiming(),
        sleep=sleep,
    )


@pytest.fixture
def product_image() -> ImagePayload:
    return png_payload()
