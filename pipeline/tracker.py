from __future__ import annotations

import asyncio
import datetime as dt
import logging
import random
import time
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from backend.app.job_store import JobStore
from backend.app.metrics import jobs_completed, jobs_created, jobs_failed, jobs_in_progress
from .errors import Forbidden, InputError, JobStateError, NotFound
from .io_types import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    GarmentRef,
    GenerationJob,
    GenerationOptions,
)

if TYPE_CHECKING:  # pragma: no cover - typing hint only
    from .pipeline import TryOnPipeline


logger = logging.getLogger(__name__)

PROGRESS_INPUTS_PREPARED = 20
PROGRESS_BACKEND_STARTED = 40
PROGRESS_MATERIALIZED = 80
PROGRESS_DONE = 100

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


def new_job_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _ensure_open(job: GenerationJob) -> None:
    if job.is_terminal:
        raise JobStateError(f"Job {job.id} is already {job.status}")


def advance(job: GenerationJob, progress: int, message: str) -> None:
    _ensure_open(job)
    job.progress = max(job.progress, min(progress, PROGRESS_DONE))
    job.message = message


def record_result(job: GenerationJob, slot_name: str, reference: str, provenance: str) -> bool:
    """Add a result slot; an existing slot is kept as-is."""
    if slot_name in job.results:
        logger.warning("Job %s slot %s already populated; keeping the first value", job.id, slot_name)
        return False
    job.results[slot_name] = reference
    job.provenance[slot_name] = provenance
    return True


def complete(job: GenerationJob, message: str) -> None:
    _ensure_open(job)
    job.status = STATUS_COMPLETED
    job.progress = PROGRESS_DONE
    job.message = message
    job.completed_at = dt.datetime.now(dt.timezone.utc)


def fail(job: GenerationJob, error: str) -> None:
    _ensure_open(job)
    job.status = STATUS_FAILED
    job.error = error
    job.message = "Virtual try-on failed"
    job.completed_at = dt.datetime.now(dt.timezone.utc)


def snapshot(job: GenerationJob) -> Dict[str, Any]:
    snap: Dict[str, Any] = {
        "status": job.status,
        "progress": job.progress,
        "message": job.message,
    }
    if job.status == STATUS_COMPLETED:
        snap["results"] = dict(job.results)
        snap["provenance"] = dict(job.provenance)
    elif job.status == STATUS_FAILED:
        snap["error"] = job.error
    return snap


def _validate(model_image_ref: str, garments: Sequence[GarmentRef], options: GenerationOptions) -> None:
    if not isinstance(model_image_ref, str) or not model_image_ref.strip():
        raise InputError("Model image is required.")
    if not garments:
        raise InputError("At least one garment is required.")
    for g in garments:
        if not isinstance(g.type, str) or not g.source:
            raise InputError("Every garment needs a type and an image.")
    if not isinstance(options.output_count, int) or options.output_count < 1:
        raise InputError("output_count must be a positive integer.")
    if options.seed is not None and not (INT32_MIN <= options.seed <= INT32_MAX):
        raise InputError("seed must fit in a 32-bit signed integer.")


class JobTracker:
    """Owns job creation, scheduling and status reads; the pipeline owns job execution."""

    def __init__(self, store: JobStore, pipeline: "TryOnPipeline", recent_limit: int = 10) -> None:
        self.store = store
        self.pipeline = pipeline
        self.recent_limit = recent_limit

    def submit(
        self,
        model_image_ref: str,
        garments: Sequence[GarmentRef],
        options: GenerationOptions,
        owner_id: str,
        model_is_default: bool = False,
    ) -> str:
        _validate(model_image_ref, garments, options)
        loop = asyncio.get_running_loop()

        job = GenerationJob(
            id=new_job_id(),
            owner_id=owner_id,
            model_image=model_image_ref,
            garments=list(garments),
            model_is_default=model_is_default,
            output_count=options.output_count,
            seed=options.seed if options.seed is not None else random.randint(0, 999999),
        )
        self.store.add(job)
        # Registered before any await so the job is visible as soon as submit returns.
        task = loop.create_task(self._run(job), name=f"tryon-{job.id}")
        self.store.attach_task(job.id, task)
        jobs_created.inc()
        jobs_in_progress.inc()
        logger.info(
            "Job %s submitted by %s (%d garment(s), %d output(s))",
            job.id,
            owner_id,
            len(job.garments),
            job.output_count,
        )
        return job.id

    async def _run(self, job: GenerationJob) -> None:
        try:
            await self.pipeline.run(job, self.store.save)
        finally:
            jobs_in_progress.dec()
            if job.status == STATUS_COMPLETED:
                jobs_completed.inc()
            elif job.status == STATUS_FAILED:
                jobs_failed.inc()

    def _owned_job(self, job_id: str, owner_id: str) -> GenerationJob:
        job = self.store.get(job_id)
        if job is None:
            raise NotFound("Job not found")
        if job.owner_id != owner_id:
            raise Forbidden("Access denied")
        return job

    def get_status(self, job_id: str, owner_id: str) -> Dict[str, Any]:
        return snapshot(self._owned_job(job_id, owner_id))

    def list_jobs(self, owner_id: str, limit: Optional[int] = None) -> Dict[str, Any]:
        jobs: List[GenerationJob] = self.store.list_for_owner(owner_id, limit or self.recent_limit)
        recent = [
            {
                "job_id": j.id,
                "status": j.status,
                "progress": j.progress,
                "message": j.message,
                "created_at": j.created_at.isoformat(),
                "completed_at": j.completed_at.isoformat() if j.completed_at else None,
            }
            for j in jobs
        ]
        return {
            "recent_jobs": recent,
            "stats": {
                "total_jobs": len(recent),
                "completed_jobs": sum(1 for j in jobs if j.status == STATUS_COMPLETED),
                "failed_jobs": sum(1 for j in jobs if j.status == STATUS_FAILED),
            },
        }

    async def wait(self, job_id: str) -> Dict[str, Any]:
        """Await a job scheduled by this process and return its final state."""
        task = self.store.get_task(job_id)
        if task is not None:
            await asyncio.shield(task)
        job = self.store.get(job_id)
        if job is None:
            raise NotFound("Job not found")
        return snapshot(job)
