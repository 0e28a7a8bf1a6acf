from __future__ import annotations

import asyncio
import base64
from types import SimpleNamespace

import pytest

from conftest import png_payload
from creative_canvas.errors import UpstreamFailure
from creative_canvas.providers.base import default_analysis, is_chinese
from creative_canvas.providers.gemini_provider import (
    GeminiProvider,
    _extract_parts,
    _strip_code_fences,
    build_creative_prompt,
    parse_analysis,
    parse_linked_concept,
)

ANALYSIS_JSON = """{
  "reasoning_steps": [
    {"step": "Product Type", "analysis": "A running shoe"},
    {"step": "Target Audience", "analysis": "Urban runners"}
  ],
  "product_type": "running shoe",
  "creative_concepts": [
    {"name": "Hero Shot", "description": "Shoe on white", "rationale": "Clarity"},
    {"name": "Lifestyle", "description": "Morning run in the city", "rationale": "Context"}
  ]
}"""


def test_parse_analysis_plain_json():
    analysis = parse_analysis(ANALYSIS_JSON)

    assert [s.step for s in analysis.reasoning_steps] == ["Product Type", "Target Audience"]
    assert [(c.concept, c.prompt, c.rationale) for c in analysis.concepts] == [
        ("Hero Shot", "Shoe on white", "Clarity"),
        ("Lifestyle", "Morning run in the city", "Context"),
    ]
    assert analysis.summary == "running shoe"


def test_parse_analysis_fenced_and_embedded():
    fenced = parse_analysis("```json\n" + ANALYSIS_JSON + "\n```")
    embedded = parse_analysis("Sure! Here is the analysis:\n" + ANALYSIS_JSON + "\nHope it helps.")

    assert len(fenced.concepts) == 2
    assert len(embedded.reasoning_steps) == 2


def test_unparseable_analysis_degrades_to_empty():
    analysis = parse_analysis("I cannot analyze this image.")

    assert analysis.reasoning_steps == []
    assert analysis.concepts == []
    assert analysis.summary == "I cannot analyze this image."


def test_strip_code_fences():
    assert _strip_code_fences("```\n{}\n```") == "{}"
    assert _strip_code_fences("  {}  ") == "{}"


def test_linked_concept_english():
    linked = parse_linked_concept(
        "Title: Morning Ritual\nDescription: Coffee and a journal on a sunny desk.\n"
        "Selling Points: calm, focus, craft"
    )
    assert linked.title == "Morning Ritual"
    assert linked.description == "Coffee and a journal on a sunny desk."
    assert linked.selling_points == ["calm", "focus", "craft"]


def test_linked_concept_chinese():
    linked = parse_linked_concept("标题：晨间仪式\n描述：咖啡与手帐。\n卖点：宁静，专注, 工艺")
    assert linked.title == "晨间仪式"
    assert linked.selling_points == ["宁静", "专注", "工艺"]


def test_linked_concept_falls_back_to_first_sentence():
    text = "A cozy bundle for slow mornings. It pairs the mug with the notebook."
    linked = parse_linked_concept(text)
    assert linked.title == "A cozy bundle for slow mornings"
    assert linked.description == text
    assert linked.selling_points == []


def test_creative_prompt_mentions_platform_and_ratio():
    prompt = build_creative_prompt("shoe on a rooftop", "9:16", platform="instagram", preset_name="Instagram Story")
    assert prompt.startswith("Create a professional advertising image for Instagram Story (instagram): shoe on a rooftop")
    assert "Portrait format." in prompt
    assert "Aspect ratio: 9:16" in prompt


def test_default_analysis_follows_language():
    assert is_chinese("zh-TW")
    assert not is_chinese("en-us")
    assert default_analysis("en-us").concepts[0].concept == "Hero Shot"
    assert len(default_analysis("zh").concepts) == 5


def _response(*parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


def test_extract_parts_reads_inline_images_and_text():
    raw = base64.b64decode(png_payload().data_b64)
    resp = _response(
        SimpleNamespace(text="here you go", inline_data=None),
        SimpleNamespace(text=None, inline_data=SimpleNamespace(mime_type="image/png", data=raw)),
    )

    images, texts = _extract_parts(resp)

    assert texts == ["here you go"]
    assert images == [png_payload()]


class _FakeModels:
    def __init__(self, resp):
        self.resp = resp
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return self.resp


def _provider(resp) -> GeminiProvider:
    provider = GeminiProvider.__new__(GeminiProvider)
    provider.client = SimpleNamespace(aio=SimpleNamespace(models=_FakeModels(resp)))
    return provider


def test_generate_creative_without_image_reports_model_text():
    provider = _provider(_response(SimpleNamespace(text="I can't draw that.", inline_data=None)))

    with pytest.raises(UpstreamFailure, match="I can't draw that."):
        asyncio.run(provider.generate_creative("a shoe", [png_payload()], "1:1"))


def test_generate_creative_sends_references_before_prompt():
    raw = base64.b64decode(png_payload().data_b64)
    provider = _provider(_response(SimpleNamespace(text=None, inline_data=SimpleNamespace(mime_type="image/png", data=raw))))

    image = asyncio.run(provider.generate_creative("a shoe", [png_payload(), png_payload(4, 4)], "1:1"))

    contents = provider.client.aio.models.calls[0]["contents"]
    assert len(contents) == 3
    assert isinstance(contents[-1], str)
    assert image == png_payload()
