"""
Unit tests for glyph rendering, feature extraction and template matching.
"""

import numpy as np
import pytest

from part_markers import config
from part_markers.models import BinaryMask, BoundingBox, Component, RasterImage
from part_markers.nodes.components import extract, filter_digit_candidates
from part_markers.nodes.preprocessing import preprocess_image
from part_markers.nodes.template_matching import (
    GLYPH_FONT,
    build_template,
    extract_features,
    get_templates,
    match,
    normalize_glyph,
    render_glyph,
    render_symbol_image,
    similarity,
)


def _single_candidate(image: RasterImage) -> Component:
    components = filter_digit_candidates(extract(preprocess_image(image)))
    assert len(components) == 1
    return components[0]


class TestGlyphFont:
    def test_covers_alphabet(self):
        assert set(GLYPH_FONT) == set(config.SYMBOL_ALPHABET)

    @pytest.mark.parametrize("symbol", list(config.SYMBOL_ALPHABET))
    def test_glyph_is_one_component(self, symbol):
        image = render_symbol_image(symbol, 30, 45)
        assert len(extract(preprocess_image(image))) == 1

    def test_render_fills_requested_box(self):
        glyph = render_glyph("8", 30, 45)
        assert glyph.shape == (45, 30)
        assert glyph[0, 0] == 0
        assert glyph[0, -1] == 0
        assert glyph[-1, 0] == 0

    def test_unknown_symbol(self):
        with pytest.raises(ValueError, match="No glyph"):
            render_glyph("x", 10, 10)


class TestNormalization:
    def test_preserves_aspect_and_centres(self):
        crop = np.zeros((45, 18), dtype=np.uint8)
        out = normalize_glyph(crop, (40, 60), margin=4)
        assert out.shape == (60, 40)
        cols = np.nonzero((out < 128).any(axis=0))[0]
        rows = np.nonzero((out < 128).any(axis=1))[0]
        assert rows.min() == 4 and rows.max() == 55
        # 18x45 scaled by 52/45 is about 21 wide, centred
        assert cols.max() - cols.min() + 1 == 21
        assert abs((cols.min() + cols.max()) / 2 - 19.5) <= 1

    def test_features_are_unit_length(self):
        for template in get_templates():
            assert np.linalg.norm(template.feature_vector) == pytest.approx(1.0)
            assert template.feature_vector.shape == (config.TEMPLATE_WIDTH * config.TEMPLATE_HEIGHT,)

    def test_empty_mask_features_are_zero(self):
        vec = extract_features(BinaryMask.empty(4, 4))
        assert not vec.any()


class TestTemplates:
    def test_bank_is_built_once(self):
        assert get_templates() is get_templates()
        assert [t.symbol for t in get_templates()] == list(config.SYMBOL_ALPHABET)

    def test_template_vectors_are_read_only(self):
        template = get_templates()[0]
        with pytest.raises(ValueError):
            template.feature_vector[0] = 1.0

    def test_templates_are_distinct(self):
        templates = get_templates()
        for i, a in enumerate(templates):
            for b in templates[i + 1:]:
                assert similarity(a.feature_vector, b.feature_vector) < 0.99

    def test_similarity_shape_mismatch(self):
        assert similarity(np.ones(3), np.ones(4)) == 0.0

    def test_build_template_is_deterministic(self):
        a = build_template("4")
        b = build_template("4")
        assert np.array_equal(a.feature_vector, b.feature_vector)


class TestMatch:
    @pytest.mark.parametrize("digit", list("0123456789"))
    def test_template_size_glyph_matches_itself(self, digit):
        image = render_symbol_image(digit)
        symbol = match(_single_candidate(image), image)
        assert symbol is not None
        assert symbol.symbol == digit
        assert symbol.confidence >= config.MATCH_THRESHOLD
        assert symbol.confidence <= 1.0

    @pytest.mark.parametrize("digit", list("0123456789"))
    def test_smaller_glyph_on_sheet(self, digit, blank_canvas, draw_text):
        canvas = blank_canvas(300, 200)
        draw_text(canvas, digit, 120, 70)
        image = RasterImage(canvas)
        symbol = match(_single_candidate(image), image)
        assert symbol is not None
        assert symbol.symbol == digit

    def test_colour_source_image(self, blank_canvas, draw_text):
        canvas = blank_canvas(200, 200)
        draw_text(canvas, "5", 80, 70)
        bgr = np.repeat(canvas[:, :, np.newaxis], 3, axis=2)
        image = RasterImage(bgr)
        symbol = match(_single_candidate(image), image)
        assert symbol.symbol == "5"

    def test_box_is_component_box(self, sixteen_image):
        candidate = filter_digit_candidates(extract(preprocess_image(sixteen_image)))[0]
        symbol = match(candidate, sixteen_image)
        assert symbol.bounding_box == candidate.bounding_box
        assert symbol.source == "template"

    def test_non_digit_shape_is_rejected(self, blank_canvas):
        canvas = blank_canvas(200, 200)
        # ring with a cross bar: digit-shaped box but not a glyph
        yy, xx = np.mgrid[0:200, 0:200]
        r = np.hypot((xx - 100) / 15.0, (yy - 100) / 22.0)
        canvas[(r > 0.75) & (r < 1.0)] = 0
        canvas[95:99, 85:116] = 0
        canvas[60:140, 98:100] = 0
        image = RasterImage(canvas)
        candidate = Component(
            np.argwhere(canvas == 0)[:, ::-1],
            BoundingBox(x_min=80, y_min=60, x_max=120, y_max=140),
        )
        result = match(candidate, image, threshold=0.99)
        assert result is None

    def test_blank_box_is_no_match(self, blank_canvas):
        image = RasterImage(blank_canvas(100, 100))
        candidate = Component(np.array([[10, 10]]), BoundingBox.from_xywh(10, 10, 20, 30))
        assert match(candidate, image) is None
