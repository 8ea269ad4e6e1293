from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import List, Optional, Sequence

import anyio
import requests

from backend.app.metrics import fetch_degradations, mock_results
from providers.base import ResultSink
from .errors import FetchDegradation
from .fallback import FallbackContext, FallbackImageSynthesizer
from .io_types import MOCK_URL_PREFIX, Provenance, ResultRecord, StoredResult


logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "VirtualTryOn-App/1.0"


def fetch_image(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT, user_agent: str = DEFAULT_USER_AGENT) -> bytes:
    """Download a result image; any failure surfaces as FetchDegradation."""
    if url.startswith("data:"):
        try:
            _, payload = url.split(",", 1)
            data = base64.b64decode(payload, validate=True)
        except (ValueError, binascii.Error) as e:
            raise FetchDegradation(f"Malformed data URI: {e}") from e
    else:
        headers = {"User-Agent": user_agent, "Accept": "image/*"}
        try:
            r = requests.get(url, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            raise FetchDegradation(f"Download failed: {e}") from e
        if r.status_code >= 400:
            raise FetchDegradation(f"Download failed with HTTP {r.status_code}")
        data = r.content
    if not data:
        raise FetchDegradation("Empty response from image URL")
    return data


class ResultMaterializer:
    def __init__(
        self,
        sink: ResultSink,
        synthesizer: Optional[FallbackImageSynthesizer] = None,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.sink = sink
        self.synthesizer = synthesizer or FallbackImageSynthesizer()
        self.fetch_timeout = fetch_timeout
        self.user_agent = user_agent

    async def _fetch(self, url: str) -> bytes:
        return await anyio.to_thread.run_sync(fetch_image, url, self.fetch_timeout, self.user_agent)

    async def _placeholder(self, slot: int, sources: Sequence[bytes], garment_types: Sequence[str]) -> bytes:
        ctx = FallbackContext(
            slot_index=slot,
            source_images=list(sources),
            garment_types=list(garment_types),
            mime_type="image/jpeg",
        )
        return await anyio.to_thread.run_sync(self.synthesizer.synthesize, ctx)

    async def materialize(
        self,
        record: ResultRecord,
        owner_id: str,
        job_id: str,
        *,
        sources: Sequence[bytes] = (),
        garment_types: Sequence[str] = (),
    ) -> StoredResult:
        data: Optional[bytes] = None
        mime_type = record.mime_type
        provenance = record.provenance

        if record.data:
            data = record.data
        elif record.url and not record.url.startswith(MOCK_URL_PREFIX) and provenance is Provenance.REAL:
            try:
                data = await self._fetch(record.url)
            except FetchDegradation as exc:
                fetch_degradations.inc()
                logger.warning("Slot %d of job %s degraded to placeholder: %s", record.slot, job_id, exc)
            except Exception as exc:  # noqa: BLE001
                fetch_degradations.inc()
                logger.exception("Unexpected error fetching slot %d of job %s: %s", record.slot, job_id, exc)

        if data is None:
            mime_type = "image/jpeg"
            provenance = Provenance.MOCK
            mock_results.inc()
            try:
                data = await self._placeholder(record.slot, sources, garment_types)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Could not render placeholder for slot %d of job %s: %s", record.slot, job_id, exc)
                data = b""

        # A slot that cannot be stored keeps a mock reference instead of failing the job.
        reference = f"{MOCK_URL_PREFIX}tryon-result-{record.slot + 1}"
        if data:
            try:
                reference = await anyio.to_thread.run_sync(
                    self.sink.save_result, owner_id, job_id, str(record.slot), data, mime_type
                )
            except Exception as exc:  # noqa: BLE001
                logger.error("Could not store slot %d of job %s: %s", record.slot, job_id, exc)
                if provenance is Provenance.REAL:
                    mock_results.inc()
                provenance = Provenance.MOCK
        return StoredResult(
            slot=record.slot,
            slot_name=record.slot_name,
            reference=reference,
            mime_type=mime_type,
            provenance=provenance,
            size_bytes=len(data),
            data=data,
        )

    async def materialize_all(
        self,
        records: Sequence[ResultRecord],
        owner_id: str,
        job_id: str,
        *,
        sources: Sequence[bytes] = (),
        garment_types: Sequence[str] = (),
    ) -> List[StoredResult]:
        settled = await asyncio.gather(
            *(
                self.materialize(r, owner_id, job_id, sources=sources, garment_types=garment_types)
                for r in records
            ),
            return_exceptions=True,
        )
        # Every slot has settled before the first error is surfaced.
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        return sorted(settled, key=lambda s: s.slot)
