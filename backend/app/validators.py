import os
from fastapi import HTTPException, Request

from pipeline.errors import InputError
from .config import settings


MAX_UPLOAD_MB = settings.get_int("uploads.max_mb", 10)
MIN_UPLOAD_BYTES = settings.get_int("uploads.min_bytes", 1024)


async def enforce_max_upload_size(request: Request) -> None:
    cl = request.headers.get("content-length")
    if not cl:
        return
    try:
        size = int(cl)
    except ValueError:
        return
    # Several images share one multipart body.
    if size > 4 * MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail="Upload too large")


def validate_content_type(content_type: str | None) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise InputError("Only image files are allowed!")


def validate_image_file(path: str, min_bytes: int = MIN_UPLOAD_BYTES, max_mb: int = MAX_UPLOAD_MB) -> None:
    size = os.path.getsize(path)
    if size < min_bytes:
        raise InputError("Image file too small")
    if size > max_mb * 1024 * 1024:
        raise InputError(f"File too large. Maximum size is {max_mb}MB.")
