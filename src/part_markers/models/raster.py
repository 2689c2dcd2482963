"""Read-only pixel containers passed between pipeline stages.

Both classes freeze a private copy of their array on construction, so a stage
can never mutate another stage's output. They are plain classes (not
dataclasses) so pydantic treats them as opaque values inside PipelineState.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray


def _frozen_copy(array: NDArray[Any], dtype: Any | None = None) -> NDArray[Any]:
    out = np.array(array, dtype=dtype, copy=True)
    out.flags.writeable = False
    return out


class RasterImage:
    """Decoded image: ``(H, W)`` gray, ``(H, W, 3)`` BGR or ``(H, W, 4)`` BGRA uint8."""

    __slots__ = ("_pixels",)

    def __init__(self, pixels: NDArray[Any]):
        arr = np.asarray(pixels)
        if arr.ndim not in (2, 3):
            raise ValueError(f"pixel buffer must be 2-D or 3-D, got shape {arr.shape}")
        if arr.ndim == 3 and arr.shape[2] not in (1, 3, 4):
            raise ValueError(f"unsupported channel count: {arr.shape[2]}")
        if arr.dtype != np.uint8:
            if arr.size and (np.nanmin(arr) < 0 or np.nanmax(arr) > 255):
                raise ValueError("pixel values must lie in 0..255")
            arr = arr.astype(np.uint8)
        self._pixels = _frozen_copy(arr)

    @property
    def pixels(self) -> NDArray[np.uint8]:
        return self._pixels

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def channels(self) -> int:
        return 1 if self._pixels.ndim == 2 else int(self._pixels.shape[2])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def __repr__(self) -> str:
        return f"RasterImage(width={self.width}, height={self.height}, channels={self.channels})"


class BinaryMask:
    """Foreground (1) / background (0) mask with the dimensions of its source image."""

    __slots__ = ("_data",)

    def __init__(self, data: NDArray[Any]):
        arr = np.asarray(data)
        if arr.ndim != 2:
            raise ValueError(f"mask must be 2-D, got shape {arr.shape}")
        self._data = _frozen_copy(arr != 0, dtype=np.uint8)

    @classmethod
    def empty(cls, width: int, height: int) -> BinaryMask:
        return cls(np.zeros((max(0, height), max(0, width)), dtype=np.uint8))

    @property
    def data(self) -> NDArray[np.uint8]:
        return self._data

    @property
    def height(self) -> int:
        return int(self._data.shape[0])

    @property
    def width(self) -> int:
        return int(self._data.shape[1])

    @property
    def foreground_count(self) -> int:
        return int(self._data.sum())

    def to_image(self) -> RasterImage:
        """Render as black-on-white gray image (foreground -> 0, background -> 255)."""
        return RasterImage(np.where(self._data == 1, 0, 255).astype(np.uint8))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BinaryMask):
            return NotImplemented
        return self._data.shape == other._data.shape and bool(np.array_equal(self._data, other._data))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"BinaryMask(width={self.width}, height={self.height}, foreground={self.foreground_count})"
