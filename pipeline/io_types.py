from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union


GARMENT_TYPES = ("top", "bottom", "dress", "outer")

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

MOCK_URL_PREFIX = "mock://"


class Provenance(str, Enum):
    REAL = "real"
    MOCK = "mock"


class RecordKind(str, Enum):
    INLINE = "inline"
    REMOTE = "remote"


@dataclass
class GarmentRef:
    type: str
    source: str
    asset_id: str = "uploaded"
    is_default: bool = False


@dataclass
class GarmentInput:
    type: str
    image_bytes: bytes


@dataclass
class BackendOptions:
    output_count: int = 1
    seed: int = 0
    category: str = "top"


@dataclass
class GenerationOptions:
    output_count: int = 1
    seed: Optional[int] = None


# Raw backend output, decoded into one of these variants before normalization.
@dataclass
class ByteStreamOutput:
    stream: Any


@dataclass
class UrlOutput:
    url: str


@dataclass
class LazyUrlOutput:
    resolver: Callable[[], Any]


@dataclass
class StaticUrlOutput:
    url: str


@dataclass
class UnknownOutput:
    description: str


RawOutput = Union[ByteStreamOutput, UrlOutput, LazyUrlOutput, StaticUrlOutput, UnknownOutput]


@dataclass
class ResultRecord:
    slot: int
    kind: RecordKind
    mime_type: str = "image/png"
    provenance: Provenance = Provenance.REAL
    data: Optional[bytes] = None
    url: Optional[str] = None

    @property
    def slot_name(self) -> str:
        return f"tryonResult{self.slot + 1}"


@dataclass
class StoredResult:
    slot: int
    slot_name: str
    reference: str
    mime_type: str
    provenance: Provenance
    size_bytes: int
    data: Optional[bytes] = field(default=None, repr=False)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class GenerationJob:
    id: str
    owner_id: str
    model_image: str
    garments: List[GarmentRef]
    model_is_default: bool = False
    output_count: int = 1
    seed: Optional[int] = None
    status: str = STATUS_PROCESSING
    progress: int = 0
    message: str = "Starting virtual try-on generation..."
    results: Dict[str, str] = field(default_factory=dict)
    provenance: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    created_at: dt.datetime = field(default_factory=_utcnow)
    completed_at: Optional[dt.datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationJob":
        payload = dict(data)
        payload["garments"] = [GarmentRef(**g) for g in payload.get("garments", [])]
        payload["created_at"] = dt.datetime.fromisoformat(payload["created_at"])
        if payload.get("completed_at"):
            payload["completed_at"] = dt.datetime.fromisoformat(payload["completed_at"])
        return cls(**payload)
