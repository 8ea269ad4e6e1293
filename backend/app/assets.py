from __future__ import annotations

import logging
import os
from typing import Dict

from PIL import Image, ImageDraw

from pipeline.errors import InputError
from .config import settings


logger = logging.getLogger(__name__)

DEFAULTS_DIR = str(settings.get("defaults.dir", "defaults"))

DEFAULT_MODELS: Dict[str, str] = {
    "1": "model1.png",
    "2": "model2.jpeg",
    "3": "model3.png",
    "4": "model4.png",
    "5": "model5.png",
    "6": "model6.jpg",
    "7": "model7.jpg",
    "8": "model8.png",
}
DEFAULT_GARMENTS: Dict[str, str] = {
    "top2": "top2.png",
    "top3": "top3.png",
    "top4": "top4.png",
    "bottom1": "bottom1.png",
    "dress": "dress.png",
}

_GARMENT_COLORS = {
    "top": ((16, 185, 129), "Top Garment"),
    "bottom": ((245, 158, 11), "Bottom Garment"),
    "dress": ((239, 68, 68), "Dress"),
}

# Anything smaller is one of our own placeholders rather than a real photo.
_REAL_IMAGE_MIN_BYTES = 1000


def resolve_default(kind: str, asset_id: str, defaults_dir: str = DEFAULTS_DIR) -> str:
    catalog = DEFAULT_MODELS if kind == "model" else DEFAULT_GARMENTS
    filename = catalog.get(str(asset_id))
    if not filename:
        raise InputError(f"Invalid {kind} ID: {asset_id}")
    path = os.path.join(defaults_dir, filename)
    if not os.path.exists(path):
        raise InputError(f"Default image not found: {filename}")
    return path


def garment_kind(asset_id: str) -> str:
    if "bottom" in asset_id:
        return "bottom"
    if "dress" in asset_id:
        return "dress"
    return "top"


def _save(image: Image.Image, path: str) -> None:
    if path.lower().endswith((".jpg", ".jpeg")):
        image.save(path, format="JPEG", quality=90)
    else:
        image.save(path, format="PNG")


def _placeholder(size, background, lines) -> Image.Image:
    im = Image.new("RGB", size, background)
    draw = ImageDraw.Draw(im)
    y = size[1] // 2 - 20
    for line in lines:
        bbox = draw.textbbox((0, 0), line)
        draw.text(((size[0] - (bbox[2] - bbox[0])) / 2, y), line, fill=(255, 255, 255))
        y += 30
    return im


def ensure_default_assets(defaults_dir: str = DEFAULTS_DIR) -> int:
    """Seed placeholder default images unless real ones are already present. Returns files written."""
    os.makedirs(defaults_dir, exist_ok=True)
    filenames = list(DEFAULT_MODELS.values()) + list(DEFAULT_GARMENTS.values())
    for filename in filenames:
        path = os.path.join(defaults_dir, filename)
        if os.path.exists(path) and os.path.getsize(path) > _REAL_IMAGE_MIN_BYTES:
            return 0

    written = 0
    for model_id, filename in DEFAULT_MODELS.items():
        path = os.path.join(defaults_dir, filename)
        if not os.path.exists(path):
            _save(_placeholder((400, 600), (31, 41, 55), [f"Model {model_id}", "Professional Model"]), path)
            written += 1
    for garment_id, filename in DEFAULT_GARMENTS.items():
        path = os.path.join(defaults_dir, filename)
        if not os.path.exists(path):
            color, label = _GARMENT_COLORS.get(garment_kind(garment_id), ((107, 114, 128), "Garment"))
            _save(_placeholder((400, 500), color, [label, garment_id.capitalize()]), path)
            written += 1
    if written:
        logger.info("Seeded %d placeholder default image(s) in %s", written, defaults_dir)
    return written
