from __future__ import annotations

import io
import logging
from typing import List

import anyio

from pipeline.fallback import FallbackContext, FallbackImageSynthesizer
from pipeline.io_types import BackendOptions, GarmentInput


logger = logging.getLogger(__name__)


class LocalSyntheticBackend:
    """
    Offline backend used when no remote credential is configured.
    Renders one PNG per requested output from the model and garment images.
    """

    name = "local"

    def __init__(self, synthesizer: FallbackImageSynthesizer | None = None) -> None:
        self.synthesizer = synthesizer or FallbackImageSynthesizer()

    def _render(self, model_image: bytes, garments: List[GarmentInput], options: BackendOptions) -> List[io.BytesIO]:
        outputs = []
        for i in range(max(1, options.output_count)):
            ctx = FallbackContext(
                slot_index=i,
                source_images=[model_image] + [g.image_bytes for g in garments],
                garment_types=[g.type for g in garments],
                mime_type="image/png",
                title=f"Synthetic Try-On ({options.category})",
            )
            outputs.append(io.BytesIO(self.synthesizer.synthesize(ctx)))
        return outputs

    async def invoke(self, model_image: bytes, garments: List[GarmentInput], options: BackendOptions) -> List[io.BytesIO]:
        logger.info("Rendering %d synthetic output(s) for category %s", options.output_count, options.category)
        return await anyio.to_thread.run_sync(self._render, model_image, garments, options)
