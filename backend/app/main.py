import datetime as dt
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_client import make_asgi_app as make_prom_app

from pipeline.errors import Forbidden, InputError, NotFound
from pipeline.io_types import GenerationOptions
from pipeline.tracker import JobTracker
from .assets import DEFAULT_GARMENTS, DEFAULT_MODELS, DEFAULTS_DIR, ensure_default_assets
from .auth import AuthUser, require_auth
from .config import settings
from .intake import build_garments, parse_garment_data, parse_output_count, parse_seed, resolve_model
from .logging_config import setup_logging
from .models import DashboardResponse, JobCreateResponse, JobStatusResponse
from .pipeline_runner import get_backend_selection, get_tracker
from .storage import Storage
from .validators import enforce_max_upload_size, validate_content_type, validate_image_file

load_dotenv()
setup_logging()

logger = logging.getLogger(__name__)

storage = Storage()
storage.ensure_dirs()
os.makedirs(DEFAULTS_DIR, exist_ok=True)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    ensure_default_assets(DEFAULTS_DIR)
    selection = get_backend_selection()
    get_tracker()
    logger.info("Try-on backend mode: %s", selection.mode)
    yield


app = FastAPI(title="Virtual Try-On API", version="0.1.0", lifespan=lifespan)

origins = str(settings.get("cors.origins", "http://localhost:3000"))
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/metrics", make_prom_app())
app.mount("/outputs", StaticFiles(directory=storage.outputs_dir), name="outputs")
app.mount("/defaults", StaticFiles(directory=DEFAULTS_DIR), name="defaults")


@app.get("/health")
def health() -> dict:
    return {
        "status": "healthy",
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "mode": get_backend_selection().mode,
        "default_images": {
            "models": list(DEFAULT_MODELS),
            "garments": list(DEFAULT_GARMENTS),
        },
    }


def _save_upload(upload: Optional[UploadFile], prefix: str, saved: List[str]) -> Optional[str]:
    if upload is None:
        return None
    validate_content_type(upload.content_type)
    path = storage.save_upload(upload.file, upload.filename, prefix=prefix)
    saved.append(path)
    validate_image_file(path)
    return path


@app.post("/v1/jobs/tryon", response_model=JobCreateResponse)
async def create_tryon_job(
    model_image: UploadFile | None = File(None),
    single_garment_image: UploadFile | None = File(None),
    top_garment_image: UploadFile | None = File(None),
    bottom_garment_image: UploadFile | None = File(None),
    model_type: Optional[str] = Form(None),
    model_id: Optional[str] = Form(None),
    garment_mode: Optional[str] = Form(None),
    garment_data: Optional[str] = Form(None),
    output_count: Optional[str] = Form(None),
    seed: Optional[str] = Form(None),
    user: AuthUser = Depends(require_auth),
    tracker: JobTracker = Depends(get_tracker),
    _lim=Depends(enforce_max_upload_size),
):
    saved: List[str] = []
    try:
        model_upload = _save_upload(model_image, "model", saved)
        uploads = {
            "single": _save_upload(single_garment_image, "single", saved),
            "top": _save_upload(top_garment_image, "top", saved),
            "bottom": _save_upload(bottom_garment_image, "bottom", saved),
        }
        model_path, model_is_default = resolve_model(model_type, model_id, model_upload, DEFAULTS_DIR)
        garments = build_garments(garment_mode, parse_garment_data(garment_data), uploads, DEFAULTS_DIR)
        options = GenerationOptions(output_count=parse_output_count(output_count), seed=parse_seed(seed))
        job_id = tracker.submit(model_path, garments, options, owner_id=user.uid, model_is_default=model_is_default)
    except InputError as e:
        for path in saved:
            storage.remove_transient(path)
        raise HTTPException(status_code=400, detail=str(e))

    # Uploads not referenced by the job (e.g. a bottom dropped under a dress) are not needed.
    used = {model_path} | {g.source for g in garments}
    for path in saved:
        if path not in used:
            storage.remove_transient(path)
    return JobCreateResponse(job_id=job_id)


@app.get("/v1/jobs/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
def get_job_status(
    job_id: str,
    user: AuthUser = Depends(require_auth),
    tracker: JobTracker = Depends(get_tracker),
):
    try:
        return tracker.get_status(job_id, user.uid)
    except NotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    except Forbidden:
        raise HTTPException(status_code=403, detail="Access denied")


@app.get("/v1/users/me/jobs", response_model=DashboardResponse)
def get_dashboard(
    user: AuthUser = Depends(require_auth),
    tracker: JobTracker = Depends(get_tracker),
):
    data = tracker.list_jobs(user.uid)
    return DashboardResponse(user_id=user.uid, **data)
