import argparse
import asyncio
import json
import os
import shutil
from typing import List, Optional

from backend.app.config import settings
from backend.app.pipeline_runner import build_tracker
from backend.app.storage import Storage
from backend.app.job_store import InMemoryJobStore
from backend.app.logging_config import setup_logging
from pipeline.io_types import GarmentRef, GenerationOptions
from providers.selection import select_backend


def _garment(value: str) -> GarmentRef:
    gtype, sep, path = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected TYPE=PATH, got {value!r}")
    return GarmentRef(type=gtype, source=path, asset_id=os.path.basename(path), is_default=True)


async def run(model: str, garments: List[GarmentRef], out_dir: str, outputs: int, seed: Optional[int], storage_root: str) -> dict:
    storage = Storage(storage_root)
    selection = select_backend(settings)
    tracker = build_tracker(settings, selection.backend, storage=storage, store=InMemoryJobStore())
    # Caller-owned inputs are never discarded.
    job_id = tracker.submit(model, garments, GenerationOptions(output_count=outputs, seed=seed), owner_id="local", model_is_default=True)
    result = await tracker.wait(job_id)
    os.makedirs(out_dir, exist_ok=True)
    for name, reference in (result.get("results") or {}).items():
        src = storage.resolve_reference(reference)
        ext = os.path.splitext(src)[1]
        shutil.copyfile(src, os.path.join(out_dir, f"{name}{ext}"))
    return result


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run one virtual try-on job in-process")
    parser.add_argument("--model", required=True, help="Path to the model image")
    parser.add_argument("--garment", action="append", type=_garment, required=True, help="TYPE=PATH, repeatable (top, bottom, dress, outer)")
    parser.add_argument("--out", required=True, help="Directory for the result images")
    parser.add_argument("--outputs", type=int, default=1, help="Number of try-on images to request")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--storage", default=os.path.join("storage", "demo"), help="Working storage root")
    args = parser.parse_args(argv)
    setup_logging()

    result = asyncio.run(run(args.model, args.garment, args.out, args.outputs, args.seed, args.storage))
    print(json.dumps(result, indent=2))
    return 0 if result.get("status") == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
