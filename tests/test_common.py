"""Tests for framecast shared utilities."""

import pytest

from framecast.common import (
    coerce_color,
    fit_scale,
    letterbox_rect,
    load_font,
    parse_hex_color,
    resolve_path_vars,
)


class TestParseHexColor:
    def test_with_hash(self):
        assert parse_hex_color("#FF8000") == (255, 128, 0)

    def test_without_hash(self):
        assert parse_hex_color("00ff7f") == (0, 255, 127)

    def test_invalid_length(self):
        with pytest.raises(ValueError, match="Invalid hex color"):
            parse_hex_color("#FFF")

    def test_invalid_chars(self):
        with pytest.raises(ValueError, match="Invalid hex color"):
            parse_hex_color("#GG0000")


class TestCoerceColor:
    def test_hex_string(self):
        assert coerce_color("#000000") == (0, 0, 0)

    def test_list(self):
        assert coerce_color([10, 20, 30]) == (10, 20, 30)

    def test_out_of_range(self):
        with pytest.raises(ValueError, match="Invalid RGB color"):
            coerce_color((0, 0, 256))

    def test_wrong_arity(self):
        with pytest.raises(ValueError):
            coerce_color((1, 2))


class TestResolvePathVars:
    def test_substitutes(self):
        assert resolve_path_vars("${media}/a.jpg", {"media": "/data"}) == "/data/a.jpg"

    def test_multiple(self):
        out = resolve_path_vars("${a}/${b}", {"a": "x", "b": "y"})
        assert out == "x/y"

    def test_unknown_variable(self):
        with pytest.raises(ValueError, match="Unknown path variable"):
            resolve_path_vars("${missing}/a.jpg", {})

    def test_no_variables(self):
        assert resolve_path_vars("/plain/path.png", {}) == "/plain/path.png"


class TestLetterbox:
    def test_fit_scale_wide_source(self):
        # 2:1 source in a 16:9 frame is limited by width.
        assert fit_scale(200, 100, 64, 36) == pytest.approx(0.32)

    def test_fit_scale_tall_source(self):
        assert fit_scale(100, 200, 64, 36) == pytest.approx(0.18)

    def test_rect_centered(self):
        x, y, w, h = letterbox_rect(200, 100, 64, 36)
        assert w == pytest.approx(64)
        assert h == pytest.approx(32)
        assert x == pytest.approx(0)
        assert y == pytest.approx(2)

    def test_zoom_grows_around_center(self):
        x, y, w, h = letterbox_rect(16, 9, 64, 36, zoom=1.5)
        assert w == pytest.approx(96)
        assert x + w / 2 == pytest.approx(32)
        assert y + h / 2 == pytest.approx(18)

    def test_offset_shifts_horizontally(self):
        x0, y0, _, _ = letterbox_rect(16, 9, 64, 36)
        x1, y1, _, _ = letterbox_rect(16, 9, 64, 36, offset_x=-10.5)
        assert x1 == pytest.approx(x0 - 10.5)
        assert y1 == y0

    def test_never_crops(self):
        for src in [(10, 1000), (1000, 10), (640, 480)]:
            _, _, w, h = letterbox_rect(*src, 1280, 720)
            assert w <= 1280 + 1e-6
            assert h <= 720 + 1e-6


class TestLoadFont:
    def test_returns_usable_font(self):
        font = load_font(20)
        bbox = font.getbbox("Hello")
        assert bbox[2] > bbox[0]

    def test_cached_per_size(self):
        assert load_font(20) is load_font(20)
        assert load_font(21) is not load_font(20)
