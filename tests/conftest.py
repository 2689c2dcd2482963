"""
Pytest configuration and fixtures for part-markers tests.
"""

from __future__ import annotations

import numpy as np
import pytest

from part_markers.models import PipelineConfig, RasterImage, TextRegionList
from tests.synthetic import stamp_text

GLYPH_W, GLYPH_H = 30, 45


class StubLLM:
    """Stand-in for a structured-output runnable.

    Returns ``response`` from invoke/ainvoke, or raises it when it is an
    exception. Received messages are kept for inspection.
    """

    def __init__(self, response):
        self.response = response
        self.calls: list = []

    def invoke(self, messages):
        self.calls.append(messages)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def ainvoke(self, messages):
        return self.invoke(messages)


@pytest.fixture
def stub_llm():
    """Factory: stub_llm(regions_or_exception) -> StubLLM."""

    def _make(response):
        if isinstance(response, list):
            response = TextRegionList.model_validate({"regions": response})
        return StubLLM(response)

    return _make


@pytest.fixture
def blank_canvas():
    """Factory for white gray canvases: blank_canvas(width, height)."""

    def _make(width: int = 800, height: int = 600) -> np.ndarray:
        return np.full((height, width), 255, dtype=np.uint8)

    return _make


@pytest.fixture
def draw_text():
    """Factory: draw_text(canvas, text, x, y) stamps block glyphs in place and returns the ink box."""

    def _draw(canvas: np.ndarray, text: str, x: int, y: int, gap: int = 10):
        return stamp_text(canvas, text, x, y, (GLYPH_W, GLYPH_H), gap)

    return _draw


@pytest.fixture
def sixteen_image(blank_canvas, draw_text) -> RasterImage:
    """800x600 sheet with "1" at (300, 250) and "6" at (340, 250)."""
    canvas = blank_canvas(800, 600)
    draw_text(canvas, "1", 300, 250)
    draw_text(canvas, "6", 340, 250)
    return RasterImage(canvas)


@pytest.fixture(scope="session")
def default_config() -> PipelineConfig:
    return PipelineConfig()
