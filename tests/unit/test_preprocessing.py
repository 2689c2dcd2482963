"""
Unit tests for the preprocessing stage.
"""

import numpy as np
import pytest

from part_markers.models import (
    BinaryMask,
    PipelineState,
    PipelineStatus,
    RasterImage,
)
from part_markers.nodes.preprocessing import (
    adaptive_threshold,
    preprocess,
    preprocess_image,
    remove_noise,
    stretch_contrast,
    threshold_window,
)
from part_markers.utils import cv_utils


class TestThresholdWindow:
    def test_minimum_window(self):
        assert threshold_window(100, 100) == 15

    def test_scales_with_short_side(self):
        assert threshold_window(800, 600) == 30
        assert threshold_window(4000, 2000) == 100


class TestGrayscale:
    def test_luminance_weights(self):
        # BGR pure red, green, blue
        pixels = np.array([[[0, 0, 255], [0, 255, 0], [255, 0, 0]]], dtype=np.uint8)
        gray = cv_utils.to_grayscale(pixels)
        assert gray.tolist() == [[76, 150, 29]]

    def test_bgra_and_gray_inputs(self):
        bgra = np.full((2, 2, 4), 200, dtype=np.uint8)
        assert cv_utils.to_grayscale(bgra).shape == (2, 2)
        gray = np.full((3, 3), 10, dtype=np.uint8)
        assert cv_utils.to_grayscale(gray) is gray


class TestStretchContrast:
    def test_flat_histogram_is_identity(self):
        gray = np.full((10, 10), 128, dtype=np.uint8)
        out = stretch_contrast(gray)
        assert np.array_equal(out, gray)
        assert out is not gray

    def test_maps_percentiles_to_full_range(self):
        gray = np.tile(np.arange(100, 200, dtype=np.uint8), (10, 1))
        out = stretch_contrast(gray)
        assert out.min() == 0
        assert out.max() == 255
        # Monotonic mapping
        assert np.all(np.diff(out[0].astype(int)) >= 0)

    def test_black_and_white_unchanged(self):
        gray = np.full((20, 20), 255, dtype=np.uint8)
        gray[5:15, 5:15] = 0
        assert np.array_equal(stretch_contrast(gray), gray)


class TestAdaptiveThreshold:
    def test_dark_square_is_foreground(self):
        gray = np.full((40, 40), 255, dtype=np.uint8)
        gray[10:20, 10:20] = 0
        mask = adaptive_threshold(gray, window=15, offset=10)
        assert mask.data[10:20, 10:20].all()
        assert mask.foreground_count == 100

    def test_tolerates_illumination_gradient(self):
        ramp = np.linspace(255, 120, 200).astype(np.uint8)
        gray = np.tile(ramp, (100, 1))
        gray[40:60, 150:160] = 0
        mask = adaptive_threshold(gray, window=31, offset=10)
        assert mask.data[40:60, 150:160].all()
        assert mask.foreground_count == 200

    def test_empty_input(self):
        mask = adaptive_threshold(np.zeros((0, 0), dtype=np.uint8), window=15)
        assert mask.foreground_count == 0


class TestRemoveNoise:
    def test_isolated_pixels_removed(self):
        data = np.zeros((10, 10), dtype=np.uint8)
        data[5, 5] = 1
        data[2, 2] = data[2, 3] = 1
        assert remove_noise(BinaryMask(data)).foreground_count == 0

    def test_solid_block_kept(self):
        data = np.zeros((10, 10), dtype=np.uint8)
        data[3:7, 3:7] = 1
        assert remove_noise(BinaryMask(data)) == BinaryMask(data)

    def test_border_pixels_pass_through(self):
        data = np.zeros((5, 5), dtype=np.uint8)
        data[0, 2] = 1
        assert remove_noise(BinaryMask(data)).data[0, 2] == 1

    def test_returns_new_mask(self):
        mask = BinaryMask(np.ones((4, 4)))
        out = remove_noise(mask)
        assert out is not mask
        assert mask.foreground_count == 16


class TestPreprocessImage:
    def test_zero_area_gives_empty_mask(self):
        mask = preprocess_image(RasterImage(np.zeros((0, 25), dtype=np.uint8)))
        assert (mask.width, mask.height, mask.foreground_count) == (25, 0, 0)

    def test_blank_image_has_no_foreground(self, blank_canvas):
        mask = preprocess_image(RasterImage(blank_canvas(200, 100)))
        assert mask.foreground_count == 0

    def test_idempotent_on_binary_image(self, blank_canvas, draw_text):
        canvas = blank_canvas(400, 300)
        draw_text(canvas, "308", 50, 60)
        draw_text(canvas, "7", 250, 200)
        first = preprocess_image(RasterImage(canvas))
        assert first.foreground_count == int((canvas == 0).sum())

        second = preprocess_image(first.to_image())
        assert second == first

    def test_mask_matches_source_dimensions(self):
        image = RasterImage(np.full((37, 53, 3), 255, dtype=np.uint8))
        mask = preprocess_image(image)
        assert (mask.width, mask.height) == (53, 37)


class TestPreprocessNode:
    def test_sets_mask_and_status(self, sixteen_image):
        state = preprocess(PipelineState(image=sixteen_image))
        assert state.status == PipelineStatus.PREPROCESSED
        assert state.threshold_window == 30
        assert state.mask.foreground_count > 0

    def test_missing_image_fails(self):
        state = preprocess(PipelineState())
        assert state.status == PipelineStatus.FAILED
        assert state.failure.error_type == "missing_image"

    @pytest.mark.parametrize("low,high", [(0.0, 100.0), (5.0, 95.0)])
    def test_config_percentiles_are_used(self, sixteen_image, low, high):
        state = PipelineState(image=sixteen_image)
        state = state.model_copy(update={
            "config": state.config.model_copy(update={"low_percentile": low, "high_percentile": high})
        })
        assert preprocess(state).status == PipelineStatus.PREPROCESSED
