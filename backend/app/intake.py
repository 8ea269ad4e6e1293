from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from pipeline.errors import InputError
from pipeline.io_types import GarmentRef
from .assets import DEFAULTS_DIR, garment_kind, resolve_default


def parse_garment_data(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InputError("Invalid garment data format") from e
    if not isinstance(data, dict):
        raise InputError("Invalid garment data format")
    return data


def parse_output_count(raw: Optional[str]) -> int:
    try:
        return int(raw) if raw not in (None, "") else 1
    except (TypeError, ValueError):
        return 1


def parse_seed(raw: Optional[str]) -> Optional[int]:
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise InputError("seed must be an integer") from e


def _garment_ref(
    gtype: str, asset_id: Optional[str], upload_path: Optional[str], defaults_dir: str
) -> GarmentRef:
    if upload_path:
        return GarmentRef(type=gtype, source=upload_path, asset_id=asset_id or "uploaded", is_default=False)
    return GarmentRef(
        type=gtype,
        source=resolve_default("garment", str(asset_id), defaults_dir),
        asset_id=str(asset_id),
        is_default=True,
    )


def resolve_model(
    model_type: Optional[str], model_id: Optional[str], upload_path: Optional[str], defaults_dir: str = DEFAULTS_DIR
) -> Tuple[str, bool]:
    """Return (path, is_default). An upload wins over a default id."""
    if upload_path:
        return upload_path, False
    if model_type == "default" and model_id:
        return resolve_default("model", model_id, defaults_dir), True
    raise InputError("Model image is required.")


def build_garments(
    mode: Optional[str],
    garment_data: Dict[str, Any],
    uploads: Dict[str, Optional[str]],
    defaults_dir: str = DEFAULTS_DIR,
) -> List[GarmentRef]:
    """
    Turn the form's garment fields into ordered garment references.
    - single: one garment, type from garment_data or inferred from the default id
    - multiple: top and/or bottom; a dress on top replaces the bottom
    """
    garments: List[GarmentRef] = []
    if mode == "single":
        upload = uploads.get("single")
        asset_id = garment_data.get("id")
        if not upload and not asset_id:
            raise InputError("Single garment image is required.")
        gtype = garment_data.get("garment_type") or (garment_kind(str(asset_id)) if asset_id else "top")
        garments.append(_garment_ref(gtype, asset_id, upload, defaults_dir))
    elif mode == "multiple":
        top = garment_data.get("top") or {}
        bottom = garment_data.get("bottom") or {}
        top_upload, bottom_upload = uploads.get("top"), uploads.get("bottom")
        has_top = bool(top_upload or top.get("id"))
        has_bottom = bool(bottom_upload or bottom.get("id"))
        if not has_top and not has_bottom:
            raise InputError("At least one garment (top or bottom) is required.")
        if has_top:
            top_type = top.get("garment_type") or ("dress" if "dress" in str(top.get("id") or "") else "top")
            garments.append(_garment_ref(top_type, top.get("id"), top_upload, defaults_dir))
        if has_bottom and not (garments and garments[0].type == "dress"):
            garments.append(_garment_ref("bottom", bottom.get("id"), bottom_upload, defaults_dir))
    else:
        raise InputError('Invalid garment type. Must be "single" or "multiple".')
    return garments
