from __future__ import annotations

import io
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="vto-tests-")
os.environ["STORAGE_ROOT"] = os.path.join(_TMP, "storage")
os.environ["DEFAULTS_DIR"] = os.path.join(_TMP, "defaults")
os.environ["JOBS_STORE"] = "memory"
os.environ.pop("REPLICATE_API_TOKEN", None)
os.environ.pop("AUTH_API_KEYS", None)

import pytest
from PIL import Image

from backend.app.job_store import InMemoryJobStore
from backend.app.storage import Storage
from pipeline.materializer import ResultMaterializer
from pipeline.pipeline import TryOnPipeline
from pipeline.post_processing import PostProcessor
from pipeline.tracker import JobTracker


def make_image(width: int = 256, height: int = 384, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.effect_noise((width, height), 64).convert("RGB").save(buffer, format=fmt)
    return buffer.getvalue()


class StaticBackend:
    name = "static"

    def __init__(self, output) -> None:
        self.output = output
        self.calls = []

    async def invoke(self, model_image, garments, options):
        self.calls.append((model_image, garments, options))
        return self.output() if callable(self.output) else self.output


class FailingBackend:
    name = "failing"

    def __init__(self, error: Exception) -> None:
        self.error = error

    async def invoke(self, model_image, garments, options):
        raise self.error


class RecordingStore(InMemoryJobStore):
    def __init__(self) -> None:
        super().__init__()
        self.history = []

    def save(self, job) -> None:
        self.history.append((job.status, job.progress))
        super().save(job)


@pytest.fixture
def storage(tmp_path) -> Storage:
    s = Storage(str(tmp_path / "storage"))
    s.ensure_dirs()
    return s


@pytest.fixture
def image_file(tmp_path):
    counter = {"n": 0}

    def _write(name: str | None = None, **kwargs) -> str:
        counter["n"] += 1
        path = tmp_path / (name or f"image-{counter['n']}.png")
        path.write_bytes(make_image(**kwargs))
        return str(path)

    return _write


@pytest.fixture
def build_tracker(storage):
    def _build(backend, store=None, post_processor="default") -> JobTracker:
        if post_processor == "default":
            post_processor = PostProcessor(storage)
        pipe = TryOnPipeline(
            backend=backend,
            reader=storage,
            materializer=ResultMaterializer(sink=storage),
            post_processor=post_processor,
            discard=storage.remove_transient,
        )
        return JobTracker(store if store is not None else InMemoryJobStore(), pipe)

    return _build
