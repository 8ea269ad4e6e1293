from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, List

from backend.app.metrics import normalization_anomalies
from .errors import NormalizationAnomaly
from .io_types import (
    MOCK_URL_PREFIX,
    ByteStreamOutput,
    LazyUrlOutput,
    Provenance,
    RawOutput,
    RecordKind,
    ResultRecord,
    StaticUrlOutput,
    UnknownOutput,
    UrlOutput,
)


logger = logging.getLogger(__name__)

_BYTES_TYPES = (bytes, bytearray, memoryview)


def decode_raw_item(item: Any) -> RawOutput:
    """Map an arbitrary backend value to a RawOutput variant; attribute access errors propagate."""
    if isinstance(item, _BYTES_TYPES) or callable(getattr(item, "read", None)):
        return ByteStreamOutput(item)
    if isinstance(item, str):
        return UrlOutput(item)
    if isinstance(item, Mapping):
        url = item.get("url")
    else:
        url = getattr(item, "url", None)
    if callable(url):
        return LazyUrlOutput(url)
    if isinstance(url, str):
        return StaticUrlOutput(url)
    if isinstance(item, Mapping):
        return UnknownOutput(f"mapping with keys {sorted(map(str, item.keys()))}")
    return UnknownOutput(type(item).__name__)


def _read_stream(stream: Any) -> bytes:
    if isinstance(stream, _BYTES_TYPES):
        return bytes(stream)
    data = stream.read()
    if isinstance(data, str):
        raise NormalizationAnomaly("stream yielded text instead of bytes")
    return bytes(data or b"")


def _to_record(variant: RawOutput, slot: int) -> ResultRecord:
    if isinstance(variant, ByteStreamOutput):
        data = _read_stream(variant.stream)
        if not data:
            raise NormalizationAnomaly("empty byte stream")
        return ResultRecord(slot=slot, kind=RecordKind.INLINE, data=data, mime_type="image/png")
    if isinstance(variant, (UrlOutput, StaticUrlOutput)):
        return ResultRecord(slot=slot, kind=RecordKind.REMOTE, url=variant.url)
    if isinstance(variant, LazyUrlOutput):
        resolved = variant.resolver()
        if resolved is None or not str(resolved):
            raise NormalizationAnomaly("URL resolver returned nothing")
        return ResultRecord(slot=slot, kind=RecordKind.REMOTE, url=str(resolved))
    raise NormalizationAnomaly(f"unrecognized output shape: {variant.description}")


def mock_record() -> ResultRecord:
    return ResultRecord(
        slot=0,
        kind=RecordKind.REMOTE,
        url=f"{MOCK_URL_PREFIX}tryon-result-1",
        provenance=Provenance.MOCK,
    )


def normalize(raw: Any) -> List[ResultRecord]:
    """
    Convert raw backend output into ordered result records.
    - A single value is treated as a one-element list; None as an empty one.
    - Items that cannot be decoded are skipped and counted.
    - When nothing survives, one mock record is returned instead of failing.
    """
    if raw is None:
        items: list = []
    elif isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        items = [raw]

    records: List[ResultRecord] = []
    for position, item in enumerate(items):
        try:
            records.append(_to_record(decode_raw_item(item), slot=len(records)))
        except Exception as exc:  # noqa: BLE001
            normalization_anomalies.inc()
            logger.warning("Skipping backend output item %d (%s): %s", position, type(item).__name__, exc)

    if not records:
        logger.warning("No usable backend output in %d item(s); substituting a mock result", len(items))
        return [mock_record()]
    logger.info("Normalized %d of %d backend output item(s)", len(records), len(items))
    return records
