"""
OpenCV utility functions for the part-marker pipeline.

This module provides reusable image processing functions for:
- Image I/O with validation (path or encoded bytes -> RasterImage)
- Grayscale conversion
- Summed-area (integral) local means
- Area-based resampling

I/O functions follow the Result | ProcessingError pattern for error handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeAlias

import cv2
import numpy as np
from numpy.typing import NDArray

from part_markers.models import ProcessingError, ProcessingStage, RasterImage

# =============================================================================
# TYPE ALIASES
# =============================================================================

# Use Any for dtype to avoid MatLike compatibility issues with OpenCV
Image: TypeAlias = NDArray[Any]  # BGR, BGRA or grayscale image
GrayImage: TypeAlias = NDArray[Any]  # Single channel grayscale


# =============================================================================
# RESULT DATACLASSES
# =============================================================================


@dataclass(frozen=True)
class ImageInfo:
    """Information about a loaded image."""

    height: int
    width: int
    channels: int
    is_grayscale: bool
    megapixels: float


# =============================================================================
# SECTION 1: IMAGE I/O
# =============================================================================


def _normalize_channels(img: Image) -> Image:
    # Convert to BGR for consistent processing
    if len(img.shape) == 2:
        return img
    channels = img.shape[2]
    if channels == 1:
        return img[:, :, 0]
    if channels == 4:
        # BGRA -> BGR (drop alpha)
        return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    return img


def load_image(
    path: str | Path,
    stage: ProcessingStage = ProcessingStage.INPUT,
) -> RasterImage | ProcessingError:
    """
    Load an image from disk with validation.

    Handles:
    - Corrupted images (cv2.imread failure)
    - 16-bit images (scaled down to 8-bit)
    - File not found / permission errors

    Args:
        path: Path to image file
        stage: Processing stage for error reporting

    Returns:
        RasterImage or ProcessingError
    """
    path = Path(path)

    if not path.exists():
        return ProcessingError(
            stage=stage,
            error_type="file_not_found",
            recoverable=False,
            message=f"Image file not found: {path}",
            details={"path": str(path)},
        )

    try:
        # Read image (cv2.imread returns None on failure)
        img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    except PermissionError:
        return ProcessingError(
            stage=stage,
            error_type="permission_denied",
            recoverable=False,
            message=f"Permission denied reading: {path}",
            details={"path": str(path)},
        )
    except cv2.error as e:
        return ProcessingError(
            stage=stage,
            error_type="io_error",
            recoverable=False,
            message=f"Error reading image: {e}",
            details={"path": str(path), "error": str(e)},
        )

    if img is None:
        return ProcessingError(
            stage=stage,
            error_type="imread_failed",
            recoverable=False,
            message=f"Failed to read image (may be corrupted): {path}",
            details={"path": str(path)},
        )
    return _to_raster(img)


def decode_image(
    data: bytes,
    stage: ProcessingStage = ProcessingStage.INPUT,
) -> RasterImage | ProcessingError:
    """Decode an encoded image (PNG, JPEG, ...) held in memory."""
    if not data:
        return ProcessingError(
            stage=stage,
            error_type="empty_input",
            recoverable=False,
            message="No image data supplied",
        )
    buffer = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    if img is None:
        return ProcessingError(
            stage=stage,
            error_type="imdecode_failed",
            recoverable=False,
            message="Failed to decode image bytes (unknown or corrupted format)",
            details={"num_bytes": len(data)},
        )
    return _to_raster(img)


def _to_raster(img: Image) -> RasterImage:
    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)
    return RasterImage(_normalize_channels(img))


def encode_png(image: RasterImage) -> bytes:
    """Encode a RasterImage as PNG bytes."""
    ok, buf = cv2.imencode(".png", image.pixels)
    if not ok:
        raise ValueError(f"PNG encoding failed for {image!r}")
    return buf.tobytes()


def get_image_info(image: Image) -> ImageInfo:
    """
    Extract metadata about an image.

    Args:
        image: BGR or grayscale image

    Returns:
        ImageInfo with dimensions and channel info
    """
    if len(image.shape) == 2:
        height, width = image.shape
        channels = 1
        is_grayscale = True
    else:
        height, width, channels = image.shape
        is_grayscale = channels == 1

    megapixels = (height * width) / 1_000_000

    return ImageInfo(
        height=height,
        width=width,
        channels=channels,
        is_grayscale=is_grayscale,
        megapixels=megapixels,
    )


# =============================================================================
# SECTION 2: PIXEL HELPERS
# =============================================================================


def to_grayscale(image: Image) -> GrayImage:
    """
    Convert to single-channel luminance (0.299R + 0.587G + 0.114B).

    Args:
        image: BGR/BGRA image or already grayscale

    Returns:
        Single-channel uint8 grayscale image
    """
    if image.size == 0:
        return np.zeros(image.shape[:2], dtype=np.uint8)
    if len(image.shape) == 2:
        return image
    channels = image.shape[2]
    if channels == 1:
        return image[:, :, 0]
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    # Assume BGR for 3 channels
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def local_mean(gray: GrayImage, window: int) -> NDArray[np.float64]:
    """
    Mean over a ``window`` x ``window`` square centred on every pixel.

    Windows are clipped at the image border and averaged over the pixels
    that remain, using a summed-area table so the cost is independent of the
    window size.

    Args:
        gray: Single-channel image
        window: Side length of the square window

    Returns:
        Float array of local means, same shape as ``gray``
    """
    height, width = gray.shape[:2]
    if height == 0 or width == 0:
        return np.zeros((height, width), dtype=np.float64)

    half = max(0, window // 2)
    integral = cv2.integral(gray, sdepth=cv2.CV_64F)

    ys = np.arange(height)
    xs = np.arange(width)
    y1 = np.clip(ys - half, 0, height - 1)
    y2 = np.clip(ys + half, 0, height - 1)
    x1 = np.clip(xs - half, 0, width - 1)
    x2 = np.clip(xs + half, 0, width - 1)

    sums = (
        integral[np.ix_(y2 + 1, x2 + 1)]
        - integral[np.ix_(y1, x2 + 1)]
        - integral[np.ix_(y2 + 1, x1)]
        + integral[np.ix_(y1, x1)]
    )
    areas = np.outer(y2 - y1 + 1, x2 - x1 + 1)
    return sums / areas


def resize_area(image: Image, target_size: tuple[int, int]) -> Image:
    """
    Resize with area-based resampling.

    Args:
        image: Input image
        target_size: (width, height)

    Returns:
        Resized image (original returned for empty input or invalid size)
    """
    if image.size == 0 or target_size[0] <= 0 or target_size[1] <= 0:
        return image
    return cv2.resize(image, target_size, interpolation=cv2.INTER_AREA)
