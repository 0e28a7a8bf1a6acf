from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any

from creative_canvas.canvas.models import ImagePayload
from creative_canvas.config import settings
from creative_canvas.errors import UpstreamFailure
from creative_canvas.providers.base import (
    ConceptSuggestion,
    LinkedConcept,
    ProductAnalysis,
    ProductRef,
    ReasoningStep,
    is_chinese,
)

logger = logging.getLogger(__name__)


_ANALYSIS_PROMPT_EN = """Analyze this product quickly and provide 5 creative concepts. Be concise.

JSON format:
{
  "reasoning_steps": [
    {"step": "Product Type", "analysis": "What is this product?"},
    {"step": "Visual Style", "analysis": "Key visual elements?"},
    {"step": "Target Audience", "analysis": "Who would buy this?"},
    {"step": "Creative Strategy", "analysis": "Best advertising approach?"},
    {"step": "Execution", "analysis": "How to implement?"}
  ],
  "product_type": "product category",
  "creative_concepts": [
    {"name": "Hero Shot", "description": "Clean product focus", "rationale": "Shows product clearly"},
    {"name": "Lifestyle", "description": "Product in use", "rationale": "Shows context"},
    {"name": "Minimalist", "description": "Simple background", "rationale": "Clean aesthetic"},
    {"name": "Premium", "description": "Luxury presentation", "rationale": "High-end appeal"},
    {"name": "Creative", "description": "Artistic approach", "rationale": "Memorable impact"}
  ]
}"""

_ANALYSIS_PROMPT_ZH = """用简体中文快速分析产品，提供5个创意概念，保持简洁。

JSON格式：
{
  "reasoning_steps": [
    {"step": "产品分析", "analysis": "简短产品描述"},
    {"step": "目标客群", "analysis": "简短客群分析"},
    {"step": "视觉特点", "analysis": "简短外观特色"},
    {"step": "市场策略", "analysis": "简短市场定位"},
    {"step": "广告方向", "analysis": "简短广告重点"}
  ],
  "product_type": "产品类别",
  "creative_concepts": [
    {"name": "英雄照片", "description": "简短说明", "rationale": "简短理由"},
    {"name": "生活情境", "description": "简短说明", "rationale": "简短理由"},
    {"name": "简约风格", "description": "简短说明", "rationale": "简短理由"},
    {"name": "高端品牌", "description": "简短说明", "rationale": "简短理由"},
    {"name": "创意表现", "description": "简短说明", "rationale": "简短理由"}
  ]
}"""

_FORMAT_NAMES = {
    "1:1": "Square format",
    "16:9": "Landscape format",
    "9:16": "Portrait format",
    "4:5": "Portrait 4:5 format",
}


def build_creative_prompt(
    prompt: str,
    aspect_ratio: str,
    platform: str = "instagram",
    preset_name: str | None = None,
) -> str:
    platform_info = f"{preset_name} ({platform})" if preset_name else f"{platform} ({aspect_ratio})"
    format_info = _FORMAT_NAMES.get(aspect_ratio, f"Format: {aspect_ratio}")
    return (
        f"Create a professional advertising image for {platform_info}: {prompt}\n"
        "High-resolution, studio-lit product photograph with professional lighting setup.\n"
        "Ultra-realistic commercial photography style with sharp focus and clean composition.\n"
        "Product prominently displayed with attention to detail and visual impact.\n"
        f"{format_info}.\n"
        f"Aspect ratio: {aspect_ratio} (important: maintain this exact aspect ratio).\n"
        f"Optimized for {platform} platform specifications and best practices."
    )


class GeminiProvider:
    name = "gemini"

    def __init__(self, api_key: str) -> None:
        # Imported lazily so the app can start without the dependency installed.
        from google import genai  # type: ignore

        self._genai = genai
        self.client = genai.Client(api_key=api_key)

    async def analyze_product(
        self,
        image: ImagePayload,
        language: str,
        model: str | None = None,
    ) -> ProductAnalysis:
        """
        Ask for strict JSON with reasoning steps and five concepts.

        Output that cannot be parsed degrades to no steps and no concepts rather
        than failing the session.
        """
        from google.genai import types  # type: ignore

        model = model or settings.gemini_vision_model
        prompt = _ANALYSIS_PROMPT_ZH if is_chinese(language) else _ANALYSIS_PROMPT_EN
        contents: list[Any] = [
            prompt,
            types.Part.from_bytes(data=image.to_bytes(), mime_type=image.mime_type),
        ]

        logger.info("analyzing product image (%s, %d b64 chars) with %s", image.mime_type, len(image.data_b64), model)
        resp = await self.client.aio.models.generate_content(model=model, contents=contents)
        raw_text: str = getattr(resp, "text", None) or ""
        return parse_analysis(raw_text)

    async def generate_creative(
        self,
        prompt: str,
        reference_images: list[ImagePayload],
        aspect_ratio: str,
        model: str | None = None,
        platform: str = "instagram",
        preset_name: str | None = None,
    ) -> ImagePayload:
        from google.genai import types  # type: ignore

        model = model or settings.gemini_image_model
        full_prompt = build_creative_prompt(prompt, aspect_ratio, platform=platform, preset_name=preset_name)

        # Reference images go first, in lineage order, then the text prompt.
        contents: list[Any] = [
            types.Part.from_bytes(data=ref.to_bytes(), mime_type=ref.mime_type) for ref in reference_images
        ]
        contents.append(full_prompt)

        logger.info("generating creative with %s (%d reference image(s), %s)", model, len(reference_images), aspect_ratio)
        resp = await self.client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["TEXT", "IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )

        if not getattr(resp, "candidates", None):
            raise UpstreamFailure("The model returned no candidates")
        images, texts = _extract_parts(resp)
        if not images:
            reason = " ".join(texts) or "No image was generated"
            raise UpstreamFailure(reason)
        return images[0]

    async def link_concept(
        self,
        products: list[ProductRef],
        merged_image: ImagePayload,
        language: str,
        model: str | None = None,
    ) -> LinkedConcept:
        from google.genai import types  # type: ignore

        model = model or settings.gemini_text_models[0]
        prompt = _linked_concept_prompt(products, language)
        resp = await self.client.aio.models.generate_content(
            model=model,
            contents=[prompt, types.Part.from_bytes(data=merged_image.to_bytes(), mime_type=merged_image.mime_type)],
        )
        text = getattr(resp, "text", None) or ""
        logger.info("linked concept generated for %d products (%d chars)", len(products), len(text))
        return parse_linked_concept(text)


def _linked_concept_prompt(products: list[ProductRef], language: str) -> str:
    product_list = "\n".join(f"{i}. {p.title}" for i, p in enumerate(products, start=1))
    if is_chinese(language):
        return (
            f"这是一个包含{len(products)}个产品的合并图片，请仔细分析这张图片中的所有产品，"
            "并基于它们的视觉特点和功能，生成一个综合的营销概念，将这些产品的特点有机结合：\n\n"
            f"产品列表：\n{product_list}\n\n"
            "请提供：\n1. 综合概念标题（简洁有力，20字以内）\n"
            "2. 详细描述（100-200字，说明如何将这些产品有机结合，基于它们的视觉特点）\n"
            "3. 核心卖点（3-5个关键词，体现产品组合的独特价值）\n\n"
            "输出格式：\n标题：[概念标题]\n描述：[详细描述]\n卖点：[关键词1, 关键词2, 关键词3]"
        )
    return (
        f"This is a merged image containing {len(products)} products. Please carefully analyze all products "
        "in this image and based on their visual characteristics and functions, generate a comprehensive "
        "marketing concept that organically combines the features of these products:\n\n"
        f"Product List:\n{product_list}\n\n"
        "Please provide:\n1. A comprehensive concept title (concise and powerful, under 20 words)\n"
        "2. Detailed description (100-200 words, explaining how to organically combine these products)\n"
        "3. Core selling points (3-5 keywords that reflect the unique value of the product combination)\n\n"
        "Output format:\nTitle: [Concept Title]\nDescription: [Detailed Description]\n"
        "Selling Points: [keyword1, keyword2, keyword3]"
    )


def _strip_code_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        # Remove leading fence line
        first_nl = s.find("\n")
        if first_nl != -1:
            s = s[first_nl + 1 :]
        # Remove trailing fence
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    return s.strip()


def _parse_jsonish(raw_text: str | None) -> dict[str, Any] | None:
    if not raw_text:
        return None
    s = _strip_code_fences(raw_text)
    if not s.startswith("{"):
        # Tolerate prose around the object.
        m = re.search(r"\{.*\}", s, re.DOTALL)
        if not m:
            return None
        s = m.group(0)
    try:
        parsed = json.loads(s)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_analysis(raw_text: str) -> ProductAnalysis:
    parsed = _parse_jsonish(raw_text)
    if parsed is None:
        logger.warning("analysis response had no parseable JSON (%d chars)", len(raw_text))
        return ProductAnalysis(reasoning_steps=[], concepts=[], summary=raw_text, raw_text=raw_text)

    steps: list[ReasoningStep] = []
    for item in parsed.get("reasoning_steps") or []:
        if isinstance(item, dict) and item.get("step"):
            steps.append(ReasoningStep(step=str(item["step"]), analysis=str(item.get("analysis", ""))))

    concepts: list[ConceptSuggestion] = []
    for item in parsed.get("creative_concepts") or []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", "")).strip()
        if not name:
            continue
        concepts.append(
            ConceptSuggestion(
                concept=name,
                prompt=str(item.get("description", "")).strip(),
                rationale=str(item.get("rationale", "")).strip(),
            )
        )

    product_type = parsed.get("product_type")
    return ProductAnalysis(
        reasoning_steps=steps,
        concepts=concepts,
        summary=str(product_type) if product_type else "Product analyzed",
        product_type=product_type,
        raw_text=raw_text,
    )


_TITLE_RE = re.compile(r"^(?:Title:|标题：)")
_DESCRIPTION_RE = re.compile(r"^(?:Description:|描述：)")
_POINTS_RE = re.compile(r"^(?:Selling Points:|卖点：)")


def parse_linked_concept(text: str) -> LinkedConcept:
    title = "Linked Concept"
    description = "Combined concept for multiple products"
    selling_points: list[str] = []

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if _TITLE_RE.match(line):
            title = _TITLE_RE.sub("", line).strip()
        elif _DESCRIPTION_RE.match(line):
            description = _DESCRIPTION_RE.sub("", line).strip()
        elif _POINTS_RE.match(line):
            points = _POINTS_RE.sub("", line)
            selling_points = [p.strip() for p in re.split(r"[,，]", points) if p.strip()]

    # Model ignored the format: use the first real sentence as the title.
    if title == "Linked Concept" and len(text) > 10:
        sentences = [s for s in re.split(r"[.!。]", text) if len(s.strip()) > 5]
        if sentences:
            title = sentences[0].strip()[:50]
            description = text

    return LinkedConcept(title=title, description=description, selling_points=selling_points)


def _extract_parts(resp: Any) -> tuple[list[ImagePayload], list[str]]:
    images: list[ImagePayload] = []
    texts: list[str] = []
    for cand in getattr(resp, "candidates", []) or []:
        content = getattr(cand, "content", None)
        parts = getattr(content, "parts", None) or []
        for part in parts:
            text = getattr(part, "text", None)
            if text:
                texts.append(text)
            inline = getattr(part, "inline_data", None)
            if not inline:
                continue
            mime = getattr(inline, "mime_type", None) or "image/png"
            data = getattr(inline, "data", None)
            if not data:
                continue
            if not mime.startswith("image/"):
                continue
            if isinstance(data, str):
                # Some transports hand back base64 text rather than bytes.
                images.append(ImagePayload(data_b64=data, mime_type=mime))
            else:
                images.append(ImagePayload(data_b64=base64.b64encode(data).decode("ascii"), mime_type=mime))
    return images, texts
