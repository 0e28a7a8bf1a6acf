from __future__ import annotations

import logging
import math
from io import BytesIO

import httpx
from PIL import Image, UnidentifiedImageError

from creative_canvas.canvas.models import ImagePayload, is_data_url
from creative_canvas.config import settings
from creative_canvas.errors import InvalidInput, UpstreamFailure

logger = logging.getLogger(__name__)

LAYOUTS = ("horizontal", "vertical", "grid")


async def fetch_image(
    url: str,
    timeout: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> ImagePayload:
    """
    Download a remote image and inline it.

    Pass `client` to reuse a shared connection pool; it is left open.
    """
    try:
        if client is None:
            timeout = settings.image_fetch_timeout_s if timeout is None else timeout
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own:
                resp = await own.get(url)
        else:
            resp = await client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise UpstreamFailure(f"Cannot fetch image from URL: {exc}") from exc

    mime = (resp.headers.get("content-type") or "image/png").split(";")[0].strip().lower()
    if not mime.startswith("image/"):
        raise UpstreamFailure(f"URL did not return an image (content-type {mime})")
    logger.info("fetched %s (%d bytes, %s)", url[:80], len(resp.content), mime)
    return ImagePayload.from_bytes(resp.content, mime_type=mime)


async def load_payload(url: str, client: httpx.AsyncClient | None = None) -> ImagePayload:
    if not url:
        raise InvalidInput("no image provided")
    if is_data_url(url):
        return ImagePayload.from_data_url(url)
    if url.startswith(("http://", "https://")):
        return await fetch_image(url, client=client)
    # Bare base64 without the data: prefix.
    return ImagePayload(data_b64=url, mime_type="image/png")


def open_image(payload: ImagePayload) -> Image.Image:
    try:
        img = Image.open(BytesIO(payload.to_bytes()))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidInput(f"could not decode image: {exc}") from exc
    return img


def to_png_payload(img: Image.Image) -> ImagePayload:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return ImagePayload.from_bytes(buf.getvalue(), mime_type="image/png")


def merge_images(
    payloads: list[ImagePayload],
    layout: str = "horizontal",
    spacing: int = 20,
    max_width: int = 0,
    max_height: int = 0,
) -> ImagePayload:
    """
    Composite several images onto one white canvas.

    - horizontal: side by side, aligned to the top
    - vertical: stacked, horizontally centered
    - grid: ceil(sqrt(n)) columns of equal cells

    `max_width`/`max_height` of 0 mean no limit; the whole composite is scaled
    down proportionally to fit. A single image is returned unchanged.
    """
    if not payloads:
        raise InvalidInput("No images provided for merging")
    if layout not in LAYOUTS:
        raise InvalidInput(f"unknown layout '{layout}'")
    if len(payloads) == 1:
        return payloads[0]

    images = [open_image(p).convert("RGBA") for p in payloads]
    logger.info("merging %d images (%s, spacing=%d)", len(images), layout, spacing)

    if layout == "horizontal":
        canvas = _merge_horizontal(images, spacing, max_width, max_height)
    elif layout == "vertical":
        canvas = _merge_vertical(images, spacing, max_width, max_height)
    else:
        canvas = _merge_grid(images, spacing, max_width, max_height)
    return to_png_payload(canvas)


def _fit_scale(width: float, height: float, max_width: int, max_height: int) -> float:
    scale = 1.0
    if max_width > 0 and width > max_width:
        scale = max_width / width
    if max_height > 0 and height > max_height:
        scale = min(scale, max_height / height)
    return scale


def _blank(width: int, height: int) -> Image.Image:
    return Image.new("RGBA", (max(1, width), max(1, height)), (255, 255, 255, 255))


def _scaled(img: Image.Image, scale: float) -> Image.Image:
    w, h = img.size
    size = (max(1, int(w * scale)), max(1, int(h * scale)))
    if size == img.size:
        return img
    return img.resize(size, Image.Resampling.LANCZOS)


def _merge_horizontal(images: list[Image.Image], spacing: int, max_width: int, max_height: int) -> Image.Image:
    total_w = sum(img.width for img in images) + spacing * (len(images) - 1)
    max_h = max(img.height for img in images)
    scale = _fit_scale(total_w, max_h, max_width, max_height)

    canvas = _blank(int(total_w * scale), int(max_h * scale))
    x = 0
    for img in images:
        resized = _scaled(img, scale)
        canvas.paste(resized, (x, 0), resized)
        x += resized.width + int(spacing * scale)
    return canvas


def _merge_vertical(images: list[Image.Image], spacing: int, max_width: int, max_height: int) -> Image.Image:
    max_w = max(img.width for img in images)
    total_h = sum(img.height for img in images) + spacing * (len(images) - 1)
    scale = _fit_scale(max_w, total_h, max_width, max_height)

    canvas = _blank(int(max_w * scale), int(total_h * scale))
    y = 0
    for img in images:
        resized = _scaled(img, scale)
        canvas.paste(resized, ((canvas.width - resized.width) // 2, y), resized)
        y += resized.height + int(spacing * scale)
    return canvas


def _merge_grid(images: list[Image.Image], spacing: int, max_width: int, max_height: int) -> Image.Image:
    cols = math.ceil(math.sqrt(len(images)))
    rows = math.ceil(len(images) / cols)
    cell_w = max(img.width for img in images)
    cell_h = max(img.height for img in images)
    scale = _fit_scale(
        cols * cell_w + (cols - 1) * spacing,
        rows * cell_h + (rows - 1) * spacing,
        max_width,
        max_height,
    )

    step_x = int(cell_w * scale) + int(spacing * scale)
    step_y = int(cell_h * scale) + int(spacing * scale)
    canvas = _blank(cols * step_x - int(spacing * scale), rows * step_y - int(spacing * scale))
    for idx, img in enumerate(images):
        resized = _scaled(img, scale)
        col, row = idx % cols, idx // cols
        canvas.paste(resized, (col * step_x, row * step_y), resized)
    return canvas


def parse_ratio(aspect_ratio: str) -> tuple[int, int] | None:
    s = (aspect_ratio or "").strip()
    if ":" not in s:
        return None
    try:
        a, b = s.split(":", 1)
        w, h = int(a), int(b)
    except ValueError:
        return None
    if w <= 0 or h <= 0:
        return None
    return w, h


def crop_to_aspect(payload: ImagePayload, aspect_ratio: str) -> ImagePayload:
    """
    Center-crop a generated image to `aspect_ratio` when the model drifted.

    Images already within 1% of the target are returned untouched.
    """
    ratio = parse_ratio(aspect_ratio)
    if ratio is None:
        return payload
    img = open_image(payload)
    w, h = img.size
    target = ratio[0] / ratio[1]
    if w <= 0 or h <= 0 or abs(w / h - target) <= target * 0.01:
        return payload

    if w / h > target:
        nw, nh = int(round(h * target)), h
    else:
        nw, nh = w, int(round(w / target))
    left = (w - nw) // 2
    top = (h - nh) // 2
    return to_png_payload(img.crop((left, top, left + nw, top + nh)))
