import asyncio
import io
import os

import pytest
import requests

from pipeline import materializer as materializer_mod
from pipeline.errors import BackendErrorKind, BackendInvocationError, Forbidden, InputError, JobStateError, NotFound
from pipeline.io_types import GarmentRef, GenerationJob, GenerationOptions
from pipeline.tracker import advance, complete, fail, record_result
from providers.local_stub import LocalSyntheticBackend

from conftest import FailingBackend, RecordingStore, StaticBackend, make_image


def png_streams(count=1):
    return lambda: [io.BytesIO(make_image(64, 64)) for _ in range(count)]


def top(path, is_default=False):
    return GarmentRef(type="top", source=path, is_default=is_default)


def test_progress_is_monotonic_and_ends_at_100(build_tracker, image_file):
    store = RecordingStore()
    tracker = build_tracker(StaticBackend(png_streams()), store=store)

    async def scenario():
        job_id = tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id="alice")
        return await tracker.wait(job_id)

    result = asyncio.run(scenario())
    progress = [p for _, p in store.history]
    assert progress == sorted(progress)
    assert progress[:3] == [20, 40, 80]
    assert store.history[-1] == ("completed", 100)
    assert result["status"] == "completed"
    assert result["message"] == "Virtual try-on completed successfully"
    assert result["results"]["tryonResult1"].startswith("/outputs/alice/")
    assert result["provenance"]["tryonResult1"] == "real"
    assert "error" not in result


def test_job_is_visible_right_after_submit(build_tracker, image_file):
    tracker = build_tracker(StaticBackend(png_streams()))

    async def scenario():
        job_id = tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id="alice")
        early = tracker.get_status(job_id, "alice")
        await tracker.wait(job_id)
        return early

    early = asyncio.run(scenario())
    assert early == {"status": "processing", "progress": 0, "message": "Starting virtual try-on generation..."}


def test_backend_failure_is_terminal_and_stable(build_tracker, image_file):
    store = RecordingStore()
    tracker = build_tracker(FailingBackend(BackendInvocationError(BackendErrorKind.TIMEOUT)), store=store)

    async def scenario():
        job_id = tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id="alice")
        await tracker.wait(job_id)
        return job_id

    job_id = asyncio.run(scenario())
    first = tracker.get_status(job_id, "alice")
    assert first["status"] == "failed"
    assert first["error"] == "Request timeout. Please try again."
    assert first["progress"] == 40
    assert "results" not in first
    assert tracker.get_status(job_id, "alice") == first
    assert [s for s, _ in store.history].count("failed") == 1


def test_unknown_and_foreign_jobs(build_tracker, image_file):
    tracker = build_tracker(StaticBackend(png_streams()))

    async def scenario():
        job_id = tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id="alice")
        await tracker.wait(job_id)
        return job_id

    job_id = asyncio.run(scenario())
    with pytest.raises(NotFound):
        tracker.get_status("nope", "alice")
    with pytest.raises(Forbidden):
        tracker.get_status(job_id, "bob")


def test_concurrent_submits_get_distinct_ids(build_tracker, image_file):
    tracker = build_tracker(StaticBackend(png_streams()), post_processor=None)

    async def scenario():
        ids = [
            tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id=owner)
            for owner in ("alice", "bob", "alice", "bob")
        ]
        await asyncio.gather(*(tracker.wait(i) for i in ids))
        return ids

    ids = asyncio.run(scenario())
    assert len(set(ids)) == 4
    assert tracker.list_jobs("alice")["stats"] == {"total_jobs": 2, "completed_jobs": 2, "failed_jobs": 0}


@pytest.mark.parametrize(
    "model,garments,options",
    [
        ("", [GarmentRef(type="top", source="/x.png")], GenerationOptions()),
        ("/m.png", [], GenerationOptions()),
        ("/m.png", [GarmentRef(type="top", source="")], GenerationOptions()),
        ("/m.png", [GarmentRef(type="top", source="/x.png")], GenerationOptions(output_count=0)),
        ("/m.png", [GarmentRef(type="top", source="/x.png")], GenerationOptions(seed=2**31)),
    ],
)
def test_invalid_submissions_create_no_job(build_tracker, model, garments, options):
    tracker = build_tracker(StaticBackend(png_streams()))

    async def scenario():
        with pytest.raises(InputError):
            tracker.submit(model, garments, options, owner_id="alice")

    asyncio.run(scenario())
    assert tracker.list_jobs("alice")["recent_jobs"] == []


def test_slow_result_download_still_completes(build_tracker, image_file, monkeypatch):
    def timeout(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(materializer_mod.requests, "get", timeout)
    tracker = build_tracker(StaticBackend(["https://replicate.delivery/out-0.png"]))

    async def scenario():
        job_id = tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id="alice")
        return await tracker.wait(job_id)

    result = asyncio.run(scenario())
    assert result["status"] == "completed"
    assert result["provenance"]["tryonResult1"] == "mock"


def test_empty_backend_output_completes_with_one_placeholder(build_tracker, image_file):
    tracker = build_tracker(StaticBackend([]), post_processor=None)

    async def scenario():
        job_id = tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id="alice")
        return await tracker.wait(job_id)

    result = asyncio.run(scenario())
    assert result["status"] == "completed"
    assert list(result["results"]) == ["tryonResult1"]
    assert result["provenance"] == {"tryonResult1": "mock"}


def test_derived_slots_are_added(build_tracker, image_file):
    tracker = build_tracker(StaticBackend(png_streams(2)))

    async def scenario():
        job_id = tracker.submit(
            image_file(), [top(image_file())], GenerationOptions(output_count=2), owner_id="alice"
        )
        return await tracker.wait(job_id)

    results = asyncio.run(scenario())["results"]
    assert {"tryonResult1", "tryonResult2", "enhancedProduct", "productBack", "modelFront", "modelBack"} <= set(results)
    assert results["modelFront"] == results["tryonResult1"]
    assert results["modelBack"] == results["tryonResult2"]


def test_post_processing_failure_does_not_fail_the_job(build_tracker, image_file):
    class BrokenPostProcessor:
        async def run(self, *args):
            raise RuntimeError("renderer crashed")

    tracker = build_tracker(StaticBackend(png_streams()), post_processor=BrokenPostProcessor())

    async def scenario():
        job_id = tracker.submit(image_file(), [top(image_file())], GenerationOptions(), owner_id="alice")
        return await tracker.wait(job_id)

    result = asyncio.run(scenario())
    assert result["status"] == "completed"
    assert list(result["results"]) == ["tryonResult1"]


def test_uploads_are_cleaned_up_but_defaults_are_kept(build_tracker, image_file):
    tracker = build_tracker(LocalSyntheticBackend())
    model = image_file("upload-model.png")
    upload = image_file("upload-top.png")
    default = image_file("default-bottom.png")

    async def scenario():
        job_id = tracker.submit(
            model,
            [top(upload), GarmentRef(type="bottom", source=default, asset_id="bottom1", is_default=True)],
            GenerationOptions(),
            owner_id="alice",
        )
        return await tracker.wait(job_id)

    assert asyncio.run(scenario())["status"] == "completed"
    assert not os.path.exists(model)
    assert not os.path.exists(upload)
    assert os.path.exists(default)


def test_local_backend_sees_classified_category(build_tracker, image_file):
    backend = StaticBackend(png_streams())
    tracker = build_tracker(backend, post_processor=None)

    async def scenario():
        job_id = tracker.submit(
            image_file(),
            [GarmentRef(type="bottom", source=image_file()), top(image_file())],
            GenerationOptions(seed=7),
            owner_id="alice",
        )
        await tracker.wait(job_id)

    asyncio.run(scenario())
    _, garment_inputs, options = backend.calls[0]
    assert options.category == "top_bottom"
    assert options.seed == 7
    assert [g.type for g in garment_inputs] == ["bottom", "top"]


def test_state_transitions():
    job = GenerationJob(id="j1", owner_id="alice", model_image="/m.png", garments=[])
    advance(job, 40, "running")
    advance(job, 20, "late update")
    assert job.progress == 40
    assert record_result(job, "tryonResult1", "/outputs/a.png", "real")
    assert not record_result(job, "tryonResult1", "/outputs/b.png", "real")
    assert job.results["tryonResult1"] == "/outputs/a.png"
    fail(job, "boom")
    assert job.message == "Virtual try-on failed"
    with pytest.raises(JobStateError):
        complete(job, "done")
    with pytest.raises(JobStateError):
        advance(job, 80, "again")


def test_storage_failure_still_completes_the_job(build_tracker, image_file, storage, monkeypatch):
    real_save = storage.save_result

    def flaky_save(owner_id, job_id, slot_name, data, mime_type):
        if slot_name == "0":
            raise OSError("No space left on device")
        return real_save(owner_id, job_id, slot_name, data, mime_type)

    monkeypatch.setattr(storage, "save_result", flaky_save)
    tracker = build_tracker(StaticBackend(png_streams(2)), post_processor=None)

    async def scenario():
        job_id = tracker.submit(
            image_file(), [top(image_file())], GenerationOptions(output_count=2), owner_id="alice"
        )
        return await tracker.wait(job_id)

    result = asyncio.run(scenario())
    assert result["status"] == "completed"
    assert result["results"]["tryonResult1"] == "mock://tryon-result-1"
    assert result["provenance"] == {"tryonResult1": "mock", "tryonResult2": "real"}
