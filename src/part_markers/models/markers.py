from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field, field_validator

from part_markers import config

from .geometry import BoundingBox


class Component:
    """Connected foreground region in source-image pixel coordinates.

    ``coords`` is an ``(N, 2)`` read-only array of ``(x, y)`` pairs; the
    bounding box is exclusive on the max side.
    """

    __slots__ = ("_coords", "bounding_box", "area")

    def __init__(self, coords: NDArray[Any], bounding_box: BoundingBox):
        arr = np.array(coords, dtype=np.int32, copy=True).reshape(-1, 2)
        arr.flags.writeable = False
        self._coords = arr
        self.bounding_box = bounding_box
        self.area = int(arr.shape[0])

    @property
    def coords(self) -> NDArray[np.int32]:
        return self._coords

    @property
    def pixels(self) -> frozenset[tuple[int, int]]:
        return frozenset((int(x), int(y)) for x, y in self._coords)

    @property
    def aspect_ratio(self) -> float:
        """Height over width of the bounding box."""
        width = self.bounding_box.width
        return self.bounding_box.height / width if width > 0 else float("inf")

    @property
    def density(self) -> float:
        box_area = self.bounding_box.area
        return self.area / box_area if box_area > 0 else 0.0

    def __repr__(self) -> str:
        b = self.bounding_box
        return (
            f"Component(area={self.area}, box=({b.x_min:g}, {b.y_min:g}, "
            f"{b.x_max:g}, {b.y_max:g}))"
        )


@dataclass(frozen=True)
class DigitTemplate:
    """Reference feature vector for one alphabet symbol."""

    symbol: str
    feature_vector: NDArray[np.float64]


def _check_symbol(value: str) -> str:
    if len(value) != 1 or value not in config.SYMBOL_ALPHABET:
        raise ValueError(f"symbol must be one of {config.SYMBOL_ALPHABET!r}, got {value!r}")
    return value


class RecognizedSymbol(BaseModel):
    symbol: str
    confidence: float = Field(ge=0.0, le=1.0)
    bounding_box: BoundingBox
    source: Literal["template", "provider"] = "template"
    # Characters split out of one provider word share a region id.
    source_region: int | None = None

    @field_validator("symbol")
    @classmethod
    def _validate_symbol(cls, value: str) -> str:
        return _check_symbol(value)


class RecognizedNumber(BaseModel):
    text: str
    bounding_box: BoundingBox
    confidence: float = Field(ge=0.0, le=1.0)
    members: list[RecognizedSymbol]
    box_source: Literal["measured", "layout", "radial"] = "measured"


class TextRegion(BaseModel):
    """One entry reported by a remote text-recognition provider."""

    text: str
    confidence: float = 0.0
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def bounding_box(self) -> BoundingBox:
        return BoundingBox.from_xywh(self.x, self.y, self.width, self.height)


class TextRegionList(BaseModel):
    regions: list[TextRegion] = []


class MarkerResult(BaseModel):
    """Result contract handed to rendering collaborators."""

    id: str
    bounding_box: BoundingBox
    confidence: float
    group: str | None = None
    box_source: Literal["measured", "layout", "radial"] = "measured"
