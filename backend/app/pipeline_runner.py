import threading
from typing import Optional

from pipeline.fallback import FallbackImageSynthesizer
from pipeline.materializer import ResultMaterializer
from pipeline.pipeline import TryOnPipeline
from pipeline.post_processing import PostProcessor
from pipeline.tracker import JobTracker
from providers.base import AIBackend
from providers.selection import BackendSelection, select_backend
from .config import Settings, settings
from .job_store import InMemoryJobStore, JobStore
from .storage import Storage

# One backend and one tracker per process; backend choice never changes after startup
_SELECTION: Optional[BackendSelection] = None
_TRACKER: Optional[JobTracker] = None
_LOCK = threading.RLock()


def make_store(cfg: Settings) -> JobStore:
    if str(cfg.get("jobs.store", "memory")).lower() == "redis":
        from .cache import RedisJobStore

        return RedisJobStore()
    return InMemoryJobStore()


def build_tracker(
    cfg: Settings,
    backend: AIBackend,
    storage: Optional[Storage] = None,
    store: Optional[JobStore] = None,
) -> JobTracker:
    storage = storage or Storage()
    storage.ensure_dirs()
    synthesizer = FallbackImageSynthesizer()
    materializer = ResultMaterializer(
        sink=storage,
        synthesizer=synthesizer,
        fetch_timeout=cfg.get_float("fetch.timeout", 30.0),
        user_agent=str(cfg.get("fetch.user_agent", "VirtualTryOn-App/1.0")),
    )
    pipe = TryOnPipeline(
        backend=backend,
        reader=storage,
        materializer=materializer,
        post_processor=PostProcessor(storage, synthesizer),
        discard=storage.remove_transient,
    )
    return JobTracker(
        store=store or make_store(cfg),
        pipeline=pipe,
        recent_limit=cfg.get_int("jobs.recent_limit", 10),
    )


def get_backend_selection() -> BackendSelection:
    global _SELECTION
    with _LOCK:
        if _SELECTION is None:
            _SELECTION = select_backend(settings)
        return _SELECTION


def get_tracker() -> JobTracker:
    global _TRACKER
    # FastAPI resolves sync dependencies on worker threads.
    with _LOCK:
        if _TRACKER is None:
            _TRACKER = build_tracker(settings, get_backend_selection().backend)
        return _TRACKER
