from __future__ import annotations

from enum import Enum
from typing import Optional


class TryOnError(Exception):
    pass


class InputError(TryOnError):
    """Submission rejected before a job exists."""


class ConfigurationError(TryOnError):
    """Remote backend credential missing or unusable."""


class NotFound(TryOnError):
    pass


class Forbidden(TryOnError):
    pass


class JobStateError(TryOnError):
    pass


class NormalizationAnomaly(TryOnError):
    """One raw output item could not be turned into a result record."""


class FetchDegradation(TryOnError):
    """A result URL could not be downloaded."""


class BackendErrorKind(str, Enum):
    AUTH = "auth"
    PARAMETER = "parameter"
    IMAGE_SIZE = "image_size"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_MESSAGES = {
    BackendErrorKind.AUTH: "Invalid Replicate API token. Please check your REPLICATE_API_TOKEN.",
    BackendErrorKind.PARAMETER: "Garment type configuration error. Please ensure proper garment selection.",
    BackendErrorKind.IMAGE_SIZE: "Image size issue. Please try with different images.",
    BackendErrorKind.TIMEOUT: "Request timeout. Please try again.",
}


class BackendInvocationError(TryOnError):
    def __init__(self, kind: BackendErrorKind, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.detail = detail or ""
        if kind in _MESSAGES:
            message = _MESSAGES[kind]
        else:
            message = f"Virtual try-on failed: {self.detail}"
        super().__init__(message)

    @classmethod
    def from_message(cls, detail: str) -> "BackendInvocationError":
        """Classify a free-form backend error text."""
        text = (detail or "").lower()
        if "auth" in text or "token" in text or "unauthenticated" in text:
            kind = BackendErrorKind.AUTH
        elif "garment_type" in text:
            kind = BackendErrorKind.PARAMETER
        elif "size" in text or "dimension" in text:
            kind = BackendErrorKind.IMAGE_SIZE
        elif "timeout" in text or "timed out" in text:
            kind = BackendErrorKind.TIMEOUT
        else:
            kind = BackendErrorKind.UNKNOWN
        return cls(kind, detail)
