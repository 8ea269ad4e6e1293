from __future__ import annotations

import logging
from typing import Callable, List, Optional

import anyio

from providers.base import AIBackend, ImageReader
from .classifier import classify
from .io_types import BackendOptions, GarmentInput, GenerationJob, Provenance
from .materializer import ResultMaterializer
from .normalizer import normalize
from .post_processing import PostProcessor
from .tracker import (
    PROGRESS_BACKEND_STARTED,
    PROGRESS_INPUTS_PREPARED,
    PROGRESS_MATERIALIZED,
    advance,
    complete,
    fail,
    record_result,
)


logger = logging.getLogger(__name__)

Checkpoint = Callable[[GenerationJob], None]


class TryOnPipeline:
    """
    Runs one job from input images to persisted results.
    Stages: read inputs -> classify -> backend -> normalize -> materialize -> post-process.
    """

    def __init__(
        self,
        backend: AIBackend,
        reader: ImageReader,
        materializer: ResultMaterializer,
        post_processor: Optional[PostProcessor] = None,
        discard: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.backend = backend
        self.reader = reader
        self.materializer = materializer
        self.post_processor = post_processor
        self.discard = discard

    async def _read(self, ref: str) -> bytes:
        return await anyio.to_thread.run_sync(self.reader.read_image, ref)

    async def run(self, job: GenerationJob, checkpoint: Checkpoint) -> None:
        garment_images: List[bytes] = []
        try:
            model_image = await self._read(job.model_image)
            garment_inputs = []
            for g in job.garments:
                garment_inputs.append(GarmentInput(type=g.type, image_bytes=await self._read(g.source)))
            garment_images = [g.image_bytes for g in garment_inputs]
            category = classify(job.garments)
            logger.info(
                "Job %s: garment_type %s for garments %s",
                job.id,
                category,
                ", ".join(g.type for g in job.garments),
            )
            advance(job, PROGRESS_INPUTS_PREPARED, "Preparing images for the try-on model...")
            checkpoint(job)

            advance(job, PROGRESS_BACKEND_STARTED, "Running the try-on model...")
            checkpoint(job)
            options = BackendOptions(output_count=job.output_count, seed=job.seed or 0, category=category)
            raw = await self.backend.invoke(model_image, garment_inputs, options)
            records = normalize(raw)

            stored = await self.materializer.materialize_all(
                records,
                job.owner_id,
                job.id,
                sources=[model_image] + garment_images,
                garment_types=[g.type for g in job.garments],
            )
            for s in stored:
                record_result(job, s.slot_name, s.reference, s.provenance.value)
            advance(job, PROGRESS_MATERIALIZED, "Processing results...")
            checkpoint(job)
        except Exception as exc:  # noqa: BLE001
            logger.error("Job %s failed: %s", job.id, exc)
            fail(job, str(exc))
            self._cleanup(job)
            checkpoint(job)
            return

        if self.post_processor is not None:
            try:
                for name, reference, provenance in await self.post_processor.run(
                    job.owner_id, job.id, stored, garment_images
                ):
                    record_result(job, name, reference, provenance)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Job %s: skipping derived images: %s", job.id, exc)

        mock_slots = sum(1 for s in stored if s.provenance is Provenance.MOCK)
        complete(job, "Virtual try-on completed successfully")
        # Inputs are gone by the time the job reads as terminal.
        self._cleanup(job)
        checkpoint(job)
        logger.info("Job %s completed with %d result(s), %d placeholder(s)", job.id, len(stored), mock_slots)

    def _cleanup(self, job: GenerationJob) -> None:
        if self.discard is None:
            return
        if not job.model_is_default:
            self.discard(job.model_image)
        for g in job.garments:
            if not g.is_default:
                self.discard(g.source)
