"""Preprocessing node: grayscale, contrast stretch, adaptive binarization, speckle removal."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from part_markers import config
from part_markers.models import (
    BinaryMask,
    PipelineState,
    PipelineStatus,
    ProcessingError,
    ProcessingStage,
    RasterImage,
)
from part_markers.utils import cv_utils
from part_markers.utils.cv_utils import GrayImage

logger = logging.getLogger(__name__)


def threshold_window(
    width: int,
    height: int,
    min_window: int = config.MIN_THRESHOLD_WINDOW,
) -> int:
    """Local-threshold window side for an image, fixed once per run."""
    return max(min_window, min(width, height) // config.THRESHOLD_WINDOW_DIVISOR)


def stretch_contrast(
    gray: GrayImage,
    low_percentile: float = config.LOW_PERCENTILE,
    high_percentile: float = config.HIGH_PERCENTILE,
) -> GrayImage:
    """
    Linearly map the low/high histogram percentiles to 0/255, clamping outside.

    When the two percentiles coincide (near-flat histogram) the image is
    returned unchanged.
    """
    if gray.size == 0:
        return gray.copy()

    hist = np.bincount(gray.ravel(), minlength=256)
    total = int(gray.size)
    low_count = int(np.floor(total * low_percentile / 100.0))
    high_count = int(np.floor(total * high_percentile / 100.0))

    low_val = int(np.searchsorted(np.cumsum(hist), low_count, side="left"))
    from_top = np.cumsum(hist[::-1])
    high_val = 255 - int(np.searchsorted(from_top, total - high_count, side="left"))

    if high_val <= low_val:
        return gray.copy()

    scale = 255.0 / float(high_val - low_val)
    stretched = np.floor((gray.astype(np.float64) - low_val) * scale + 0.5)
    return np.clip(stretched, 0, 255).astype(np.uint8)


def adaptive_threshold(
    gray: GrayImage,
    window: int,
    offset: int = config.THRESHOLD_OFFSET,
) -> BinaryMask:
    """Foreground where a pixel is darker than its rounded local mean minus ``offset``."""
    if gray.size == 0:
        return BinaryMask(np.zeros(gray.shape[:2], dtype=np.uint8))
    mean = np.floor(cv_utils.local_mean(gray, window) + 0.5)
    return BinaryMask((gray.astype(np.float64) < mean - offset).astype(np.uint8))


def remove_noise(
    mask: BinaryMask,
    min_neighbors: int = config.MIN_FOREGROUND_NEIGHBORS,
) -> BinaryMask:
    """
    Clear interior foreground pixels with fewer than ``min_neighbors`` foreground
    pixels among their 8 neighbours. Border rows/columns pass through.
    """
    data = mask.data
    height, width = data.shape
    if height < 3 or width < 3:
        return BinaryMask(data)

    kernel = np.ones((3, 3), dtype=np.float32)
    kernel[1, 1] = 0.0
    counts = cv2.filter2D(
        data.astype(np.float32), -1, kernel, borderType=cv2.BORDER_CONSTANT
    )

    out = data.copy()
    interior = out[1:-1, 1:-1]
    sparse = counts[1:-1, 1:-1] < min_neighbors
    interior[sparse] = 0
    return BinaryMask(out)


def preprocess_image(
    image: RasterImage,
    window: int | None = None,
    *,
    low_percentile: float = config.LOW_PERCENTILE,
    high_percentile: float = config.HIGH_PERCENTILE,
    offset: int = config.THRESHOLD_OFFSET,
    min_neighbors: int = config.MIN_FOREGROUND_NEIGHBORS,
) -> BinaryMask:
    """
    Turn a raster image into a foreground mask at original resolution.

    Each step produces a new buffer. Zero-area images yield an empty mask.
    """
    if image.width == 0 or image.height == 0:
        return BinaryMask.empty(image.width, image.height)

    if window is None:
        window = threshold_window(image.width, image.height)

    gray = cv_utils.to_grayscale(image.pixels)
    stretched = stretch_contrast(gray, low_percentile, high_percentile)
    binary = adaptive_threshold(stretched, window, offset)
    return remove_noise(binary, min_neighbors)


def preprocess(state: PipelineState) -> PipelineState:
    """
    Preprocess node.

    Updates state with:
    - threshold_window: window side used for this run
    - mask: BinaryMask of foreground pixels
    - errors: non-recoverable error for malformed buffers
    """
    cfg = state.config
    image = state.image
    if image is None:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.PREPROCESS,
            error_type="missing_image",
            recoverable=False,
            message="No image loaded",
        ))

    window = threshold_window(image.width, image.height, cfg.min_threshold_window)
    try:
        mask = preprocess_image(
            image,
            window,
            low_percentile=cfg.low_percentile,
            high_percentile=cfg.high_percentile,
            offset=cfg.threshold_offset,
            min_neighbors=cfg.min_foreground_neighbors,
        )
    except (cv2.error, ValueError) as e:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.PREPROCESS,
            error_type="malformed_pixel_buffer",
            recoverable=False,
            message=f"Preprocessing failed: {e}",
            details={**state.image_details(), "error": str(e)},
        ))

    logger.debug(
        "preprocess: %dx%d window=%d foreground=%d",
        image.width, image.height, window, mask.foreground_count,
    )
    return state.model_copy(update={
        "threshold_window": window,
        "mask": mask,
        "status": PipelineStatus.PREPROCESSED,
    })
