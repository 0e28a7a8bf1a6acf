from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from creative_canvas.assembly.images import LAYOUTS, load_payload, merge_images
from creative_canvas.canvas.analysis import analyze_with_deadline
from creative_canvas.canvas.editor import Canvas
from creative_canvas.canvas.models import ImagePayload, NodeType, node_to_dict
from creative_canvas.config import settings
from creative_canvas.errors import (
    CanvasError,
    HasDownstreamDependents,
    InvalidInput,
    LoadFormatError,
    MissingCredential,
    NodeNotFound,
    SessionActive,
    SessionCancelled,
    UpstreamFailure,
    UpstreamTimeout,
)
from creative_canvas.model_selection import ModelSelector
from creative_canvas.presets import available_platforms, platform_presets, preset_by_name
from creative_canvas.providers.base import ProductRef
from creative_canvas.providers.gemini_provider import GeminiProvider, build_creative_prompt
from creative_canvas.storage import ProjectStore, load_project

logger = logging.getLogger(__name__)

app = FastAPI(title="creative_canvas")

store = ProjectStore()
selector = ModelSelector()


def _gemini_for_key(api_key: str) -> GeminiProvider:
    return GeminiProvider(api_key=api_key)


canvas = Canvas(analyzer_factory=_gemini_for_key, generator_factory=_gemini_for_key)


def _api_key(value: str | None) -> str | None:
    return (value or "").strip() or settings.gemini_api_key


def _get_gemini(api_key: str | None) -> GeminiProvider:
    key = _api_key(api_key)
    if not key:
        raise HTTPException(status_code=400, detail="An API key is required (api_key or GEMINI_API_KEY)")
    return _gemini_for_key(key)


_STATUS_BY_ERROR: list[tuple[type[CanvasError], int]] = [
    (MissingCredential, 400),
    (InvalidInput, 400),
    (LoadFormatError, 400),
    (NodeNotFound, 404),
    (HasDownstreamDependents, 409),
    (SessionActive, 409),
    (SessionCancelled, 409),
    (UpstreamTimeout, 504),
    (UpstreamFailure, 502),
]


@app.exception_handler(CanvasError)
async def _canvas_error(request: Request, exc: CanvasError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    body: dict[str, Any] = {"success": False, "error": str(exc), "kind": type(exc).__name__}
    if isinstance(exc, HasDownstreamDependents):
        body["dependents"] = exc.dependents
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=body)


@contextmanager
def _upstream(action: str) -> Iterator[None]:
    """Report anything other than a CanvasError raised by a provider, fetch or merge as an UpstreamFailure."""
    try:
        yield
    except CanvasError:
        raise
    except Exception as exc:
        logger.exception("%s failed", action)
        raise UpstreamFailure(f"{action} failed: {exc}") from exc


def _canvas_state() -> dict[str, Any]:
    return {
        "projectName": canvas.project_name,
        "nodes": [node_to_dict(n) for n in canvas.graph.nodes],
        "edges": [{"id": e.id, "source": e.source, "target": e.target} for e in canvas.graph.edges],
    }


async def _upload_payload(upload: UploadFile | None, image_url: str | None) -> ImagePayload:
    if upload is not None and upload.filename:
        content = await upload.read()
        if not content:
            raise InvalidInput("the uploaded image is empty")
        return ImagePayload.from_bytes(content, mime_type=upload.content_type or "image/png")
    if image_url:
        return await load_payload(image_url)
    raise InvalidInput("No product image provided")


# --- stateless collaborator routes -----------------------------------------


@app.post("/api/analyze-product")
async def analyze_product(
    product_image: UploadFile | None = File(None),
    image_url: str = Form(""),
    language: str = Form(settings.default_language),
    api_key: str = Form(""),
):
    gemini = _get_gemini(api_key)
    with _upstream("Analysis"):
        payload = await _upload_payload(product_image, image_url)
        analysis = await analyze_with_deadline(
            gemini,
            payload,
            language,
            selector.current.name,
            timeout=settings.analysis_timeout_s,
            fallback=settings.analysis_timeout_fallback,
        )
    return {
        "success": True,
        "analysis": analysis.raw_text,
        "product_type": analysis.product_type,
        "reasoning_steps": [{"step": s.step, "analysis": s.analysis} for s in analysis.reasoning_steps],
        "creative_prompts": [
            {"concept": c.concept, "prompt": c.prompt, "rationale": c.rationale} for c in analysis.concepts
        ],
        "product_image_url": payload.to_data_url(),
    }


class PromptData(BaseModel):
    concept: str = ""
    prompt: str = ""


class GenerateCreativeRequest(BaseModel):
    prompt_data: PromptData
    product_image_path: str | None = None
    generated_image_path: str | None = None
    size: str = "1:1"
    platform: str = "instagram"
    preset: str | None = None
    language: str = settings.default_language
    api_key: str | None = None


@app.post("/api/generate-creative-from-concept")
async def generate_creative_from_concept(req: GenerateCreativeRequest):
    gemini = _get_gemini(req.api_key)
    if not req.prompt_data.prompt.strip():
        raise HTTPException(status_code=400, detail="A prompt is required")

    preset = preset_by_name(req.preset) if req.preset else None
    with _upstream("Generation"):
        # Product image first, then the prior generation.
        references = [
            await load_payload(url) for url in (req.product_image_path, req.generated_image_path) if url
        ]
        image = await gemini.generate_creative(
            req.prompt_data.prompt,
            references,
            req.size,
            platform=req.platform,
            preset_name=preset.name if preset else None,
        )
    return {
        "success": True,
        "image_url": image.to_data_url(),
        "concept": req.prompt_data.concept,
        "prompt": build_creative_prompt(
            req.prompt_data.prompt, req.size, platform=req.platform, preset_name=preset.name if preset else None
        ),
        "platform": req.platform,
        "size": req.size,
        "preset": preset.to_dict() if preset else None,
    }


class LinkedProduct(BaseModel):
    id: str
    title: str = ""
    imageUrl: str


class LinkedConceptRequest(BaseModel):
    products: list[LinkedProduct]
    language: str = settings.default_language
    api_key: str | None = None


@app.post("/api/generate-linked-concept")
async def generate_linked_concept(req: LinkedConceptRequest):
    if len(req.products) < 2:
        raise HTTPException(status_code=400, detail="At least 2 products are required")
    gemini = _get_gemini(req.api_key)

    with _upstream("Linked concept"):
        images = await asyncio.gather(*(load_payload(p.imageUrl) for p in req.products))
        merged = merge_images(
            list(images),
            layout="horizontal",
            spacing=20,
            max_width=settings.merge_max_width,
            max_height=settings.merge_max_height,
        )
        refs = [ProductRef(id=p.id, title=p.title, image=img) for p, img in zip(req.products, images)]
        linked = await gemini.link_concept(refs, merged, req.language, selector.current.name)
    return {
        "success": True,
        "concept": {
            "title": linked.title,
            "description": linked.description,
            "sellingPoints": linked.selling_points,
            "products": [{"id": p.id, "title": p.title} for p in req.products],
        },
        "mergedImage": merged.to_data_url(),
        "analyzedImages": len(req.products),
    }


class MergeRequest(BaseModel):
    images: list[str]
    layout: str = "horizontal"
    spacing: int = Field(20, ge=0)


@app.post("/api/merge-images")
async def merge_images_route(req: MergeRequest):
    if len(req.images) < 2:
        raise HTTPException(status_code=400, detail="At least 2 images are required for merging")
    if req.layout not in LAYOUTS:
        raise HTTPException(status_code=400, detail=f"layout must be one of {', '.join(LAYOUTS)}")
    with _upstream("Image merge"):
        payloads = [await load_payload(url) for url in req.images]
        merged = merge_images(
            payloads,
            req.layout,
            req.spacing,
            settings.merge_route_max_width,
            settings.merge_route_max_height,
        )
    return {
        "success": True,
        "mergedImageUrl": merged.to_data_url(),
        "mergedImageInfo": {"imagesMerged": len(payloads), "layout": req.layout, "spacing": req.spacing},
    }


@app.get("/api/presets")
def list_presets(platform: str | None = None, ratio: str | None = None):
    return {
        "platforms": available_platforms(),
        "presets": [p.to_dict() for p in platform_presets(platform, ratio)],
    }


def _models_state() -> dict[str, Any]:
    return {
        "current": selector.current.name,
        "displayName": selector.current.display_name,
        "models": [{"name": m.name, "displayName": m.display_name, "description": m.description} for m in selector.models],
    }


@app.get("/api/models")
def list_models():
    return _models_state()


@app.post("/api/models/next")
def next_model():
    selector.advance()
    return _models_state()


# --- canvas routes -----------------------------------------------------------


@app.get("/canvas")
def get_canvas():
    return _canvas_state()


@app.post("/canvas/products")
async def add_product(
    product_image: UploadFile | None = File(None),
    image_url: str = Form(""),
    title: str = Form(""),
    language: str = Form(settings.default_language),
    api_key: str = Form(""),
):
    payload = await _upload_payload(product_image, image_url)
    created = await canvas.analysis.submit(
        payload,
        api_key=_api_key(api_key),
        language=language,
        title=title or (product_image.filename if product_image is not None else None),
        model=selector.current.name,
    )
    return {"success": True, "created": [node_to_dict(n) for n in created]}


@app.get("/canvas/analysis")
def analysis_status():
    session = canvas.analysis.session
    if session is None:
        return {"analyzing": False, "state": canvas.analysis.state.value}
    visible = session.steps[: session.current_step + 1]
    return {
        "analyzing": True,
        "state": session.state.value,
        "title": session.title,
        "currentStep": session.current_step,
        "totalSteps": len(session.steps),
        "steps": [{"step": s.step, "analysis": s.analysis} for s in visible],
    }


@app.post("/canvas/analysis/cancel")
def cancel_analysis():
    return {"cancelled": canvas.analysis.cancel()}


@app.post("/canvas/nodes/{node_id}/concepts")
def add_concept(node_id: str):
    node = canvas.graph.get(node_id)
    if node.type == NodeType.PRODUCT:
        concept = canvas.add_concept_from_product(node_id)
    elif node.type == NodeType.CREATIVE:
        concept = canvas.add_concept_from_creative(node_id)
    else:
        raise HTTPException(status_code=400, detail="Concepts can only be added below products or creatives")
    return node_to_dict(concept)


class InsightRequest(BaseModel):
    name: str
    summary: str | None = None


@app.post("/canvas/insights")
def add_insight(req: InsightRequest):
    return node_to_dict(canvas.add_concept_from_insight(req.name, req.summary))


class NodeUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    x: float | None = None
    y: float | None = None


@app.patch("/canvas/nodes/{node_id}")
def update_node(node_id: str, req: NodeUpdate):
    node = canvas.graph.get(node_id)
    if req.content is not None:
        node = canvas.update_content(node_id, req.content, req.title)
    elif req.title is not None:
        node = canvas.update_title(node_id, req.title)
    if req.x is not None or req.y is not None:
        node = canvas.graph.move_node(
            node_id,
            req.x if req.x is not None else node.position.x,
            req.y if req.y is not None else node.position.y,
        )
    return node_to_dict(node)


@app.delete("/canvas/nodes/{node_id}")
def delete_node(node_id: str):
    removed = canvas.delete_node(node_id)
    return {"success": True, "deleted": removed.id}


class GenerateRequest(BaseModel):
    api_key: str | None = None


@app.post("/canvas/concepts/{concept_id}/generate")
async def generate_from_concept(concept_id: str, req: GenerateRequest | None = None):
    api_key = _api_key(req.api_key if req else None)
    pending = canvas.generation.begin(concept_id, api_key=api_key)
    outcome = await canvas.generation.complete(pending)
    creative = canvas.graph.find(outcome.creative_id)
    return {
        "success": outcome.ok,
        "error": outcome.error,
        "concept_id": outcome.concept_id,
        "creative": node_to_dict(creative) if creative else None,
    }


class SaveRequest(BaseModel):
    projectName: str | None = None


@app.post("/canvas/save")
def save_canvas(req: SaveRequest | None = None):
    if req and req.projectName:
        canvas.rename(req.projectName)
    if not canvas.project_name:
        raise HTTPException(status_code=400, detail="Name the project before saving")
    path = store.save(canvas)
    return {"success": True, "filename": path.name, "project": canvas.snapshot()}


@app.post("/canvas/load")
async def load_canvas(project_file: UploadFile | None = File(None), filename: str = Form("")):
    if project_file is not None and project_file.filename:
        document = load_project(await project_file.read())
    elif filename:
        document = store.read(filename)
    else:
        raise HTTPException(status_code=400, detail="Provide a project file or a saved project name")
    canvas.restore(document)
    return {"success": True, **_canvas_state()}


@app.get("/canvas/projects")
def list_saved_projects():
    return {
        "projects": [
            {"filename": p.filename, "name": p.name, "savedAt": p.saved_at, "nodes": p.node_count}
            for p in store.list_projects()
        ]
    }
