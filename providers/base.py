from __future__ import annotations

from typing import Any, List, Protocol

from pipeline.io_types import BackendOptions, GarmentInput


class AIBackend(Protocol):
    name: str

    async def invoke(self, model_image: bytes, garments: List[GarmentInput], options: BackendOptions) -> Any: ...


class ImageReader(Protocol):
    def read_image(self, ref: str) -> bytes: ...


class ResultSink(Protocol):
    def save_result(self, owner_id: str, job_id: str, slot_name: str, data: bytes, mime_type: str) -> str: ...
