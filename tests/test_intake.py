import pytest

from backend.app.assets import ensure_default_assets, garment_kind, resolve_default
from backend.app.intake import build_garments, parse_garment_data, parse_output_count, parse_seed, resolve_model
from pipeline.errors import InputError


@pytest.fixture
def defaults(tmp_path):
    d = str(tmp_path / "defaults")
    assert ensure_default_assets(d) > 0
    return d


def test_seeding_skips_when_real_images_exist(defaults):
    assert ensure_default_assets(defaults) == 0


def test_resolve_default_errors(defaults):
    with pytest.raises(InputError, match="Invalid model ID"):
        resolve_default("model", "99", defaults)
    with pytest.raises(InputError, match="Invalid garment ID"):
        resolve_default("garment", "hat", defaults)


def test_garment_kind():
    assert garment_kind("bottom1") == "bottom"
    assert garment_kind("dress") == "dress"
    assert garment_kind("top3") == "top"


def test_model_upload_wins_over_default(defaults):
    assert resolve_model("default", "1", "/uploads/m.png", defaults) == ("/uploads/m.png", False)
    path, is_default = resolve_model("default", "1", None, defaults)
    assert is_default and path.startswith(defaults)
    with pytest.raises(InputError, match="Model image is required."):
        resolve_model(None, None, None, defaults)


def test_single_default_garment_infers_type(defaults):
    garments = build_garments("single", {"id": "dress"}, {}, defaults)
    assert [(g.type, g.asset_id, g.is_default) for g in garments] == [("dress", "dress", True)]


def test_single_upload_uses_declared_type(defaults):
    garments = build_garments("single", {"garment_type": "outer"}, {"single": "/uploads/coat.png"}, defaults)
    assert [(g.type, g.source, g.is_default) for g in garments] == [("outer", "/uploads/coat.png", False)]


def test_multiple_top_and_bottom(defaults):
    garments = build_garments(
        "multiple", {"top": {"id": "top2"}, "bottom": {}}, {"bottom": "/uploads/jeans.png"}, defaults
    )
    assert [g.type for g in garments] == ["top", "bottom"]
    assert garments[1].source == "/uploads/jeans.png"


def test_dress_replaces_bottom(defaults):
    garments = build_garments("multiple", {"top": {"id": "dress"}, "bottom": {"id": "bottom1"}}, {}, defaults)
    assert [g.type for g in garments] == ["dress"]


@pytest.mark.parametrize(
    "mode,data,message",
    [
        ("single", {}, "Single garment image is required."),
        ("multiple", {}, "At least one garment"),
        ("pair", {}, "Invalid garment type"),
    ],
)
def test_garment_errors(defaults, mode, data, message):
    with pytest.raises(InputError, match=message):
        build_garments(mode, data, {}, defaults)


def test_form_field_parsing():
    assert parse_garment_data(None) == {}
    assert parse_garment_data('{"id": "top2"}') == {"id": "top2"}
    with pytest.raises(InputError, match="Invalid garment data format"):
        parse_garment_data("{not json")
    with pytest.raises(InputError):
        parse_garment_data("[1, 2]")
    assert parse_output_count(None) == 1
    assert parse_output_count("3") == 3
    assert parse_output_count("many") == 1
    assert parse_seed("") is None
    assert parse_seed("12") == 12
    with pytest.raises(InputError):
        parse_seed("abc")
