from __future__ import annotations

from typing import Iterable

from .io_types import GarmentRef


GARMENT_PARAMETERS = {
    "top": "top_image",
    "bottom": "bottom_image",
    "dress": "dress_image",
    "outer": "outer_image",
}


def classify(garments: Iterable[GarmentRef]) -> str:
    """
    Map a garment set to the single composition category sent to the backend.
    Order of the input does not matter; unknown types are ignored.
    """
    types = {g.type for g in garments}
    if "dress" in types:
        return "dress"
    has_top = "top" in types
    if has_top and "bottom" in types:
        return "top_bottom"
    if has_top and "outer" in types:
        return "top_outer"
    if has_top:
        return "top"
    if "bottom" in types:
        return "bottom"
    if "outer" in types:
        return "outer"
    return "top"


def garment_parameter(garment_type: str) -> str:
    return GARMENT_PARAMETERS.get(garment_type, "top_image")
