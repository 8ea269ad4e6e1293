from __future__ import annotations

import io
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import anyio
from PIL import Image, ImageDraw, ImageEnhance, ImageFilter, ImageOps

from providers.base import ResultSink
from .fallback import CANVAS_SIZE, FallbackContext, FallbackImageSynthesizer, encode
from .io_types import Provenance, StoredResult


logger = logging.getLogger(__name__)


def _open(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as im:
        return im.convert("RGB")


def _framed(image: Image.Image, background: Tuple[int, int, int], label: str) -> Image.Image:
    canvas = Image.new("RGB", CANVAS_SIZE, background)
    fitted = ImageOps.contain(image, (CANVAS_SIZE[0] - 112, CANVAS_SIZE[1] - 240))
    canvas.paste(fitted, ((CANVAS_SIZE[0] - fitted.width) // 2, (CANVAS_SIZE[1] - fitted.height) // 2))
    draw = ImageDraw.Draw(canvas)
    draw.text((24, 24), label, fill=(31, 41, 55))
    draw.rectangle([8, 8, CANVAS_SIZE[0] - 9, CANVAS_SIZE[1] - 9], outline=(209, 213, 219), width=2)
    return canvas


def render_enhanced_product(garment: bytes) -> bytes:
    """
    Product shot of the garment.
    - Auto-contrast and an unsharp mask to emulate a studio finish.
    """
    im = ImageOps.autocontrast(_open(garment))
    im = im.filter(ImageFilter.UnsharpMask(radius=1.5, percent=150, threshold=3))
    return encode(_framed(im, (255, 255, 255), "Enhanced Product"), "image/jpeg")


def render_product_back(garment: bytes) -> bytes:
    im = ImageOps.mirror(_open(garment))
    im = ImageEnhance.Brightness(im).enhance(0.85)
    return encode(_framed(im, (243, 244, 246), "Back View"), "image/jpeg")


def render_model_back(front: bytes) -> bytes:
    im = ImageOps.mirror(_open(front))
    im = im.filter(ImageFilter.GaussianBlur(radius=1))
    im = ImageEnhance.Brightness(im).enhance(0.9)
    return encode(im, "image/jpeg")


class PostProcessor:
    """Derives the product and model-view slots from the try-on results."""

    def __init__(self, sink: ResultSink, synthesizer: Optional[FallbackImageSynthesizer] = None) -> None:
        self.sink = sink
        self.synthesizer = synthesizer or FallbackImageSynthesizer()

    def _render_or_placeholder(self, render, source: Optional[bytes], slot: int, label: str) -> Tuple[bytes, Provenance]:
        if source:
            try:
                return render(source), Provenance.REAL
            except Exception as exc:  # noqa: BLE001
                logger.warning("Could not render %s: %s", label, exc)
        ctx = FallbackContext(slot_index=slot, mime_type="image/jpeg", title=label)
        return self.synthesizer.synthesize(ctx), Provenance.MOCK

    def _derive(
        self, owner_id: str, job_id: str, tryon: Sequence[StoredResult], garment_images: Sequence[bytes]
    ) -> List[Tuple[str, str, str]]:
        derived: List[Tuple[str, str, str]] = []
        garment = garment_images[0] if garment_images else None

        data, prov = self._render_or_placeholder(render_enhanced_product, garment, 0, "Enhanced Product")
        derived.append(("enhancedProduct", self.sink.save_result(owner_id, job_id, "enhanced", data, "image/jpeg"), prov.value))
        data, prov = self._render_or_placeholder(render_product_back, garment, 1, "Product Back")
        derived.append(("productBack", self.sink.save_result(owner_id, job_id, "product-back", data, "image/jpeg"), prov.value))

        front = tryon[0]
        derived.append(("modelFront", front.reference, front.provenance.value))
        if len(tryon) > 1:
            derived.append(("modelBack", tryon[1].reference, tryon[1].provenance.value))
        else:
            data, prov = self._render_or_placeholder(render_model_back, front.data, 0, "Model Back")
            if front.provenance is Provenance.MOCK:
                prov = Provenance.MOCK
            derived.append(("modelBack", self.sink.save_result(owner_id, job_id, "model-back", data, "image/jpeg"), prov.value))
        return derived

    async def run(
        self, owner_id: str, job_id: str, tryon: Sequence[StoredResult], garment_images: Sequence[bytes]
    ) -> List[Tuple[str, str, str]]:
        """Return (slot name, reference, provenance) for every derived slot; empty when there is nothing to derive."""
        if not tryon:
            return []
        return await anyio.to_thread.run_sync(self._derive, owner_id, job_id, list(tryon), list(garment_images))
