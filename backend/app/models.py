from typing import Dict, List

from pydantic import BaseModel


class JobCreateResponse(BaseModel):
    job_id: str
    status: str = "processing"
    message: str = "Virtual try-on generation started successfully"


class JobStatusResponse(BaseModel):
    status: str
    progress: int
    message: str
    results: Dict[str, str] | None = None
    provenance: Dict[str, str] | None = None
    error: str | None = None


class JobSummary(BaseModel):
    job_id: str
    status: str
    progress: int
    message: str
    created_at: str
    completed_at: str | None = None


class JobStats(BaseModel):
    total_jobs: int
    completed_jobs: int
    failed_jobs: int


class DashboardResponse(BaseModel):
    user_id: str
    recent_jobs: List[JobSummary]
    stats: JobStats
