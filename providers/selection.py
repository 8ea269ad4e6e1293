from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from pipeline.errors import ConfigurationError
from .local_stub import LocalSyntheticBackend
from .remote import DEFAULT_BASE_URL, DEFAULT_MODEL, RemoteBackend


logger = logging.getLogger(__name__)

_MODEL_RE = re.compile(r"^[\w.-]+/[\w.-]+(:[\w.-]+)?$")


@dataclass
class BackendSelection:
    backend: Union[RemoteBackend, LocalSyntheticBackend]
    mode: str
    reason: Optional[ConfigurationError] = None


def remote_backend_configured(api_token: Optional[str], model: Optional[str]) -> bool:
    token = (api_token or "").strip()
    if not token or any(c.isspace() for c in token):
        return False
    return bool(model) and bool(_MODEL_RE.match(model))


def select_backend(settings) -> BackendSelection:
    """Pick the backend once per process from configuration alone."""
    token = settings.get("replicate.api_token")
    model = str(settings.get("replicate.model", DEFAULT_MODEL))
    if remote_backend_configured(token, model):
        backend = RemoteBackend(
            api_token=str(token).strip(),
            model=model,
            base_url=str(settings.get("replicate.base_url", DEFAULT_BASE_URL)),
            timeout=settings.get_float("replicate.timeout", 300.0),
            poll_interval=settings.get_float("replicate.poll_interval", 2.0),
        )
        logger.info("Using remote try-on backend %s", model)
        return BackendSelection(backend=backend, mode=backend.name)

    if not token:
        reason = ConfigurationError("REPLICATE_API_TOKEN is not set")
    else:
        reason = ConfigurationError(f"Remote backend configuration is invalid (model={model!r})")
    logger.info("Using local synthetic try-on backend: %s", reason)
    return BackendSelection(backend=LocalSyntheticBackend(), mode=LocalSyntheticBackend.name, reason=reason)
