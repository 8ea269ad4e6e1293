import io

from prometheus_client import REGISTRY

from pipeline.io_types import MOCK_URL_PREFIX, Provenance, RecordKind
from pipeline.normalizer import normalize


class LazyFile:
    def __init__(self, url=None, error=None):
        self._url = url
        self._error = error

    def url(self):
        if self._error:
            raise self._error
        return self._url


class StaticFile:
    def __init__(self, url):
        self.url = url


def anomalies() -> float:
    return REGISTRY.get_sample_value("vto_normalization_anomalies_total") or 0.0


def assert_single_mock(records):
    assert len(records) == 1
    assert records[0].slot == 0
    assert records[0].provenance is Provenance.MOCK
    assert records[0].url.startswith(MOCK_URL_PREFIX)


def test_byte_stream_becomes_inline_record():
    records = normalize([io.BytesIO(b"\x89PNGdata")])
    assert len(records) == 1
    rec = records[0]
    assert rec.kind is RecordKind.INLINE
    assert rec.data == b"\x89PNGdata"
    assert rec.provenance is Provenance.REAL
    assert rec.mime_type == "image/png"


def test_single_url_string():
    records = normalize("https://host/x.png")
    assert len(records) == 1
    assert records[0].kind is RecordKind.REMOTE
    assert records[0].url == "https://host/x.png"
    assert records[0].provenance is Provenance.REAL


def test_lazy_resolver_and_static_url():
    records = normalize([LazyFile("https://host/a.png"), StaticFile("https://host/b.png"), {"url": "https://host/c.png"}])
    assert [r.url for r in records] == ["https://host/a.png", "https://host/b.png", "https://host/c.png"]
    assert [r.slot for r in records] == [0, 1, 2]


def test_resolver_failure_is_skipped_not_fatal():
    before = anomalies()
    records = normalize([LazyFile(error=RuntimeError("expired")), "https://host/ok.png"])
    assert len(records) == 1
    assert records[0].url == "https://host/ok.png"
    assert records[0].slot == 0
    assert anomalies() == before + 1


def test_empty_output_yields_mock():
    assert_single_mock(normalize([]))
    assert_single_mock(normalize(None))


def test_unknown_object_yields_mock():
    before = anomalies()
    assert_single_mock(normalize({"unknownField": 1}))
    assert anomalies() == before + 1


def test_all_unrecognized_items_yield_one_mock():
    assert_single_mock(normalize([42, object(), {"url": 7}, LazyFile(url=None)]))


def test_empty_stream_is_skipped():
    records = normalize([io.BytesIO(b""), b"raw-bytes"])
    assert len(records) == 1
    assert records[0].data == b"raw-bytes"


class ExpiredUrl:
    @property
    def url(self):
        raise RuntimeError("signed URL expired")


def test_item_whose_url_attribute_raises_is_skipped():
    before = anomalies()
    records = normalize([ExpiredUrl(), "https://host/x.png"])
    assert len(records) == 1
    assert records[0].url == "https://host/x.png"
    assert records[0].slot == 0
    assert anomalies() == before + 1


def test_single_item_whose_url_attribute_raises_yields_mock():
    assert_single_mock(normalize(ExpiredUrl()))
