from __future__ import annotations

import asyncio
import json
import threading
from typing import Dict, List, Optional

import redis

from pipeline.io_types import GenerationJob
from .config import settings


REDIS_URL = str(settings.get("redis.url", "redis://localhost:6379/2"))
JOB_TTL = settings.get_int("jobs.ttl", 86400)


class RedisJobStore:
    """
    Job registry shared through Redis so several API processes can answer status reads.
    Task handles cannot leave the process that scheduled them and stay local.
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl: int = JOB_TTL) -> None:
        self._r = client if client is not None else redis.from_url(REDIS_URL)
        self._ttl = ttl
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(job_id: str) -> str:
        return f"job:{job_id}"

    @staticmethod
    def _owner_key(owner_id: str) -> str:
        return f"owner:{owner_id}:jobs"

    def add(self, job: GenerationJob) -> None:
        if self._r.get(self._key(job.id)) is not None:
            raise KeyError(f"Job {job.id} already exists")
        self.save(job)
        owner_key = self._owner_key(job.owner_id)
        self._r.zadd(owner_key, {job.id: job.created_at.timestamp()})
        self._r.expire(owner_key, self._ttl)

    def get(self, job_id: str) -> Optional[GenerationJob]:
        raw = self._r.get(self._key(job_id))
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return GenerationJob.from_dict(json.loads(raw))

    def save(self, job: GenerationJob) -> None:
        self._r.setex(self._key(job.id), self._ttl, json.dumps(job.to_dict()))

    def list_for_owner(self, owner_id: str, limit: int) -> List[GenerationJob]:
        ids = self._r.zrevrange(self._owner_key(owner_id), 0, max(limit, 1) - 1)
        jobs = []
        for job_id in ids:
            if isinstance(job_id, bytes):
                job_id = job_id.decode("utf-8")
            job = self.get(job_id)
            if job:
                jobs.append(job)
        return jobs

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
