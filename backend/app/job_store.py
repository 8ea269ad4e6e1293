import asyncio
import copy
import threading
from typing import Dict, List, Optional, Protocol

from pipeline.io_types import GenerationJob


class JobStore(Protocol):
    def add(self, job: GenerationJob) -> None: ...

    def get(self, job_id: str) -> Optional[GenerationJob]: ...

    def save(self, job: GenerationJob) -> None: ...

    def list_for_owner(self, owner_id: str, limit: int) -> List[GenerationJob]: ...

    def attach_task(self, job_id: str, task: "asyncio.Task[None]") -> None: ...

    def get_task(self, job_id: str) -> Optional["asyncio.Task[None]"]: ...


class InMemoryJobStore:
    """
    Process-local registry. The mapping is guarded by a lock because status reads
    can arrive from worker threads while pipeline tasks insert and update jobs.
    get() hands out copies so readers never observe a half-applied update.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, GenerationJob] = {}
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._lock = threading.Lock()

    def add(self, job: GenerationJob) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise KeyError(f"Job {job.id} already exists")
            self._jobs[job.id] = copy.deepcopy(job)

    def get(self, job_id: str) -> Optional[GenerationJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def save(self, job: GenerationJob) -> None:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)

    def list_for_owner(self, owner_id: str, limit: int) -> List[GenerationJob]:
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values() if j.owner_id == owner_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def attach_task(self, job_id: str, task: "asyncio.Task[None]") -> None:
        with self._lock:
            self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._drop_task(job_id))

    def get_task(self, job_id: str) -> Optional["asyncio.Task[None]"]:
        with self._lock:
            return self._tasks.get(job_id)

    def _drop_task(self, job_id: str) -> None:
        with self._lock:
            self._tasks.pop(job_id, None)
