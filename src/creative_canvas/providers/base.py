from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from creative_canvas.canvas.models import ImagePayload


@dataclass(frozen=True)
class ReasoningStep:
    step: str
    analysis: str


@dataclass(frozen=True)
class ConceptSuggestion:
    concept: str
    prompt: str
    rationale: str


@dataclass(frozen=True)
class ProductAnalysis:
    reasoning_steps: list[ReasoningStep]
    concepts: list[ConceptSuggestion]
    summary: str = ""
    product_type: str | None = None
    raw_text: str | None = None


@dataclass(frozen=True)
class ProductRef:
    id: str
    title: str
    image: ImagePayload


@dataclass(frozen=True)
class LinkedConcept:
    title: str
    description: str
    selling_points: list[str] = field(default_factory=list)


_STOCK_CONCEPTS_EN = [
    ("Hero Shot", "Clean product focus on a seamless studio background", "Shows the product clearly"),
    ("Lifestyle", "The product in use in an everyday setting", "Shows real-world context"),
    ("Minimalist", "Product on a simple, uncluttered background", "Clean aesthetic"),
    ("Premium", "Luxury presentation with dramatic lighting", "High-end appeal"),
    ("Creative", "Artistic, unexpected composition around the product", "Memorable impact"),
]

_STOCK_CONCEPTS_ZH = [
    ("英雄照片", "纯色摄影棚背景下的产品特写", "清晰展示产品"),
    ("生活情境", "产品在日常生活场景中的使用", "展示真实使用情境"),
    ("简约风格", "简洁背景上的产品", "干净的视觉美感"),
    ("高端品牌", "戏剧化灯光下的奢华呈现", "高端品牌形象"),
    ("创意表现", "围绕产品的艺术化构图", "令人印象深刻"),
]


def is_chinese(language: str) -> bool:
    return (language or "").lower().startswith("zh")


def default_analysis(language: str) -> ProductAnalysis:
    """Stock result used when the analyzer times out and the fallback policy is on."""
    stock = _STOCK_CONCEPTS_ZH if is_chinese(language) else _STOCK_CONCEPTS_EN
    return ProductAnalysis(
        reasoning_steps=[],
        concepts=[ConceptSuggestion(concept=n, prompt=d, rationale=r) for n, d, r in stock],
        summary="Product analyzed",
    )


class ImageAnalyzer(Protocol):
    name: str

    async def analyze_product(
        self,
        image: ImagePayload,
        language: str,
        model: str | None = None,
    ) -> ProductAnalysis: ...


class ImageGenerator(Protocol):
    name: str

    async def generate_creative(
        self,
        prompt: str,
        reference_images: list[ImagePayload],
        aspect_ratio: str,
        model: str | None = None,
    ) -> ImagePayload: ...


class ConceptLinker(Protocol):
    name: str

    async def link_concept(
        self,
        products: list[ProductRef],
        merged_image: ImagePayload,
        language: str,
        model: str | None = None,
    ) -> LinkedConcept: ...
