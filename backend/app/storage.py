import logging
import os
import random
import shutil
import time
from typing import BinaryIO, Optional

from .config import settings


logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}


class Storage:
    """
    Local filesystem storage.
    - uploads/ holds transient request images
    - outputs/<owner>/ holds persisted results, served under /outputs
    """

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = root or str(settings.get("storage.root", "storage"))
        self.uploads_dir = os.path.join(self.root, "uploads")
        self.outputs_dir = os.path.join(self.root, "outputs")

    def ensure_dirs(self) -> None:
        os.makedirs(self.uploads_dir, exist_ok=True)
        os.makedirs(self.outputs_dir, exist_ok=True)

    def save_upload(self, stream: BinaryIO, filename: Optional[str], prefix: Optional[str] = None) -> str:
        self.ensure_dirs()
        ts = int(time.time() * 1000)
        name = filename or "upload.bin"
        base = f"{prefix}-{ts}-{random.randint(0, 10**9)}-" if prefix else f"{ts}-"
        safe_name = name.replace("/", "_").replace("\\", "_")
        path = os.path.join(self.uploads_dir, base + safe_name)
        with open(path, "wb") as f:
            shutil.copyfileobj(stream, f)
        return path

    def read_image(self, ref: str) -> bytes:
        with open(ref, "rb") as f:
            return f.read()

    def save_result(self, owner_id: str, job_id: str, slot_name: str, data: bytes, mime_type: str) -> str:
        owner = owner_id.replace("/", "_").replace("\\", "_").replace("..", "_")
        owner_dir = os.path.join(self.outputs_dir, owner)
        os.makedirs(owner_dir, exist_ok=True)
        filename = f"{job_id}-{slot_name}{_EXTENSIONS.get(mime_type, '.png')}"
        with open(os.path.join(owner_dir, filename), "wb") as f:
            f.write(data)
        return f"/outputs/{owner}/{filename}"

    def resolve_reference(self, reference: str) -> str:
        """Map an /outputs/... reference back to its file path."""
        rel = reference.removeprefix("/outputs/")
        return os.path.join(self.outputs_dir, *rel.split("/"))

    def remove_transient(self, path: str) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as exc:
            logger.warning("Could not remove upload %s: %s", path, exc)
