from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps


logger = logging.getLogger(__name__)

CANVAS_SIZE = (512, 640)
_PALETTE = [
    ((79, 70, 229), (124, 58, 237)),
    ((14, 116, 144), (59, 130, 246)),
    ((190, 24, 93), (244, 114, 182)),
    ((21, 128, 61), (132, 204, 22)),
]
_FORMATS = {"image/jpeg": "JPEG", "image/png": "PNG"}


@dataclass
class FallbackContext:
    slot_index: int = 0
    source_images: Sequence[bytes] = field(default_factory=list)
    garment_types: Sequence[str] = field(default_factory=list)
    mime_type: str = "image/jpeg"
    title: str = "AI Try-On Preview"
    mirror: bool = False


def _gradient(size: Tuple[int, int], start: Tuple[int, int, int], end: Tuple[int, int, int]) -> Image.Image:
    width, height = size
    image = Image.new("RGB", size, start)
    draw = ImageDraw.Draw(image)
    for y in range(height):
        t = y / max(height - 1, 1)
        color = tuple(int(a + (b - a) * t) for a, b in zip(start, end))
        draw.line([(0, y), (width, y)], fill=color)
    return image


def _decode(data: bytes) -> Optional[Image.Image]:
    try:
        with Image.open(io.BytesIO(data)) as im:
            return im.convert("RGBA")
    except Exception as exc:  # noqa: BLE001
        logger.debug("Ignoring undecodable source image: %s", exc)
        return None


def _paste_fitted(canvas: Image.Image, image: Image.Image, box: Tuple[int, int, int, int], opacity: float = 1.0) -> None:
    left, top, right, bottom = box
    fitted = ImageOps.contain(image, (right - left, bottom - top))
    if opacity < 1.0:
        alpha = fitted.getchannel("A").point(lambda a: int(a * opacity))
        fitted.putalpha(alpha)
    x = left + (right - left - fitted.width) // 2
    y = top + (bottom - top - fitted.height) // 2
    canvas.paste(fitted, (x, y), fitted)


def _centered_text(draw: ImageDraw.ImageDraw, y: int, text: str, fill, width: int) -> int:
    font = ImageFont.load_default()
    bbox = draw.textbbox((0, 0), text, font=font)
    draw.text(((width - (bbox[2] - bbox[0])) / 2, y), text, fill=fill, font=font)
    return y + (bbox[3] - bbox[1]) + 12


def render_placeholder(context: FallbackContext) -> Image.Image:
    start, end = _PALETTE[context.slot_index % len(_PALETTE)]
    canvas = _gradient(CANVAS_SIZE, start, end).convert("RGBA")
    width, height = CANVAS_SIZE

    sources: List[Image.Image] = [im for im in (_decode(b) for b in context.source_images) if im is not None]
    if sources:
        # First source is the model; garments are layered over the torso region.
        _paste_fitted(canvas, sources[0], (0, 80, width, height - 80))
        for garment in sources[1:]:
            _paste_fitted(canvas, garment, (width // 4, height // 4, 3 * width // 4, 3 * height // 4), opacity=0.7)

    if context.mirror:
        canvas = ImageOps.mirror(canvas)

    draw = ImageDraw.Draw(canvas)
    y = _centered_text(draw, 24, context.title, (255, 255, 255), width)
    _centered_text(draw, y, f"Result {context.slot_index + 1}", (229, 231, 235), width)
    if context.garment_types:
        _centered_text(draw, height - 48, " + ".join(context.garment_types), (255, 255, 255), width)
    draw.rectangle([8, 8, width - 9, height - 9], outline=(255, 255, 255), width=3)
    return canvas.convert("RGB")


def encode(image: Image.Image, mime_type: str) -> bytes:
    fmt = _FORMATS.get(mime_type, "JPEG")
    buf = io.BytesIO()
    if fmt == "JPEG":
        image.convert("RGB").save(buf, format=fmt, quality=90)
    else:
        image.save(buf, format=fmt)
    return buf.getvalue()


class FallbackImageSynthesizer:
    """Produces placeholder bytes whenever a real result image is unavailable."""

    def synthesize(self, context: FallbackContext) -> bytes:
        return encode(render_placeholder(context), context.mime_type)
