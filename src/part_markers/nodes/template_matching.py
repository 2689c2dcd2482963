"""Template matching of digit candidates against the symbol alphabet.

Candidates and templates go through the same normalization: the ink crop is
fitted (aspect preserved) into a white template-sized canvas, re-binarized
with a glyph-local threshold and flattened into an L2-normalised binary
foreground vector. Similarity is the cosine (dot product of unit vectors).
"""

from __future__ import annotations

from functools import lru_cache

import numpy as np
from numpy.typing import NDArray

from part_markers import config
from part_markers.models import (
    BinaryMask,
    BoundingBox,
    Component,
    DigitTemplate,
    RasterImage,
    RecognizedSymbol,
)
from part_markers.utils import cv_utils
from part_markers.utils.cv_utils import GrayImage

from .preprocessing import adaptive_threshold, preprocess_image, threshold_window

# Block glyphs on a 5x7 grid. Every glyph is 4-connected so it labels as a
# single component.
GLYPH_FONT: dict[str, tuple[str, ...]] = {
    "0": ("#####", "#...#", "#...#", "#...#", "#...#", "#...#", "#####"),
    "1": ("..#..", ".##..", "..#..", "..#..", "..#..", "..#..", ".###."),
    "2": ("#####", "....#", "....#", "#####", "#....", "#....", "#####"),
    "3": ("#####", "....#", "....#", "#####", "....#", "....#", "#####"),
    "4": ("#...#", "#...#", "#...#", "#####", "....#", "....#", "....#"),
    "5": ("#####", "#....", "#....", "#####", "....#", "....#", "#####"),
    "6": ("#####", "#....", "#....", "#####", "#...#", "#...#", "#####"),
    "7": ("#####", "....#", "....#", "..###", "....#", "....#", "....#"),
    "8": ("#####", "#...#", "#...#", "#####", "#...#", "#...#", "#####"),
    "9": ("#####", "#...#", "#...#", "#####", "....#", "....#", "#####"),
    # A lone minus fails the candidate aspect filter; only provider text yields "-".
    "-": (".....", ".....", ".....", ".###.", ".....", ".....", "....."),
}

TEMPLATE_CANVAS_PADDING = 12


def render_glyph(symbol: str, width: int, height: int) -> GrayImage:
    """Draw ``symbol`` black-on-white filling a ``width`` x ``height`` box."""
    if symbol not in GLYPH_FONT:
        raise ValueError(f"No glyph for symbol {symbol!r}")
    rows = GLYPH_FONT[symbol]
    cells = np.array([[ch == "#" for ch in row] for row in rows], dtype=bool)
    # Nearest-cell lookup in integer arithmetic so cell edges are exact
    row_idx = (np.arange(height) * cells.shape[0]) // max(1, height)
    col_idx = (np.arange(width) * cells.shape[1]) // max(1, width)
    scaled = cells[row_idx[:, np.newaxis], col_idx[np.newaxis, :]]
    return np.where(scaled, 0, 255).astype(np.uint8)


def render_symbol_image(
    symbol: str,
    width: int = config.TEMPLATE_WIDTH,
    height: int = config.TEMPLATE_HEIGHT,
    padding: int = TEMPLATE_CANVAS_PADDING,
) -> RasterImage:
    """Glyph centred on a white canvas with ``padding`` pixels on every side."""
    canvas = np.full((height + 2 * padding, width + 2 * padding), 255, dtype=np.uint8)
    canvas[padding:padding + height, padding:padding + width] = render_glyph(symbol, width, height)
    return RasterImage(canvas)


def normalize_glyph(
    gray_crop: GrayImage,
    size: tuple[int, int] = (config.TEMPLATE_WIDTH, config.TEMPLATE_HEIGHT),
    margin: int = config.GLYPH_MARGIN,
) -> GrayImage:
    """Fit a crop into a white ``size`` canvas, preserving aspect ratio, centred."""
    target_w, target_h = size
    inner_w = max(1, target_w - 2 * margin)
    inner_h = max(1, target_h - 2 * margin)
    crop_h, crop_w = gray_crop.shape[:2]

    scale = min(inner_w / crop_w, inner_h / crop_h)
    new_w = min(inner_w, max(1, round(crop_w * scale)))
    new_h = min(inner_h, max(1, round(crop_h * scale)))
    resized = cv_utils.resize_area(gray_crop, (new_w, new_h))

    canvas = np.full((target_h, target_w), 255, dtype=np.uint8)
    x0 = (target_w - new_w) // 2
    y0 = (target_h - new_h) // 2
    canvas[y0:y0 + new_h, x0:x0 + new_w] = resized
    return canvas


def binarize_glyph(
    normalized: GrayImage,
    offset: int = config.GLYPH_THRESHOLD_OFFSET,
) -> BinaryMask:
    height, width = normalized.shape[:2]
    return adaptive_threshold(normalized, threshold_window(width, height), offset)


def extract_features(mask: BinaryMask) -> NDArray[np.float64]:
    vec = mask.data.astype(np.float64).ravel()
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        return vec
    return vec / norm


def similarity(a: NDArray[np.float64], b: NDArray[np.float64]) -> float:
    if a.shape != b.shape:
        return 0.0
    return float(np.dot(a, b))


def crop_gray(image: RasterImage, box: BoundingBox) -> GrayImage:
    x0 = max(0, int(np.floor(box.x_min)))
    y0 = max(0, int(np.floor(box.y_min)))
    x1 = min(image.width, int(np.ceil(box.x_max)))
    y1 = min(image.height, int(np.ceil(box.y_max)))
    crop = np.ascontiguousarray(image.pixels[y0:y1, x0:x1])
    return cv_utils.to_grayscale(crop)


def glyph_features(
    image: RasterImage,
    box: BoundingBox,
    size: tuple[int, int] = (config.TEMPLATE_WIDTH, config.TEMPLATE_HEIGHT),
) -> NDArray[np.float64] | None:
    """Feature vector for the glyph inside ``box``, or None when nothing is inked."""
    crop = crop_gray(image, box)
    if crop.size == 0:
        return None
    mask = binarize_glyph(normalize_glyph(crop, size))
    if mask.foreground_count == 0:
        return None
    return extract_features(mask)


def build_template(
    symbol: str,
    size: tuple[int, int] = (config.TEMPLATE_WIDTH, config.TEMPLATE_HEIGHT),
) -> DigitTemplate:
    """Render ``symbol`` at template size and run it through the candidate path."""
    width, height = size
    canvas = render_symbol_image(symbol, width, height)
    ys, xs = np.nonzero(preprocess_image(canvas).data)
    if ys.size == 0:
        raise ValueError(f"Rendered glyph for {symbol!r} has no foreground")
    ink = BoundingBox(
        x_min=int(xs.min()), y_min=int(ys.min()),
        x_max=int(xs.max()) + 1, y_max=int(ys.max()) + 1,
    )
    features = glyph_features(canvas, ink, size)
    if features is None:
        raise ValueError(f"Template for {symbol!r} lost all foreground")
    features.flags.writeable = False
    return DigitTemplate(symbol=symbol, feature_vector=features)


@lru_cache(maxsize=4)
def get_templates(
    size: tuple[int, int] = (config.TEMPLATE_WIDTH, config.TEMPLATE_HEIGHT),
) -> tuple[DigitTemplate, ...]:
    """Template bank for the whole alphabet, built once per size and shared."""
    return tuple(build_template(symbol, size) for symbol in config.SYMBOL_ALPHABET)


def score_templates(
    features: NDArray[np.float64],
    templates: tuple[DigitTemplate, ...],
) -> list[tuple[str, float]]:
    return [(t.symbol, similarity(features, t.feature_vector)) for t in templates]


def match(
    component: Component,
    source_image: RasterImage,
    templates: tuple[DigitTemplate, ...] | None = None,
    threshold: float = config.MATCH_THRESHOLD,
) -> RecognizedSymbol | None:
    """
    Classify one candidate against the template bank.

    The crop is taken from the original (not binarized) pixels. Returns None
    when the best cosine similarity does not exceed ``threshold``.
    """
    if templates is None:
        templates = get_templates()
    features = glyph_features(source_image, component.bounding_box)
    if features is None:
        return None

    scores = score_templates(features, templates)
    # max() keeps the first of equal scores, i.e. alphabet order
    symbol, best = max(scores, key=lambda item: item[1])
    if best <= threshold:
        return None
    return RecognizedSymbol(
        symbol=symbol,
        confidence=min(1.0, max(0.0, best)),
        bounding_box=component.bounding_box,
        source="template",
    )
