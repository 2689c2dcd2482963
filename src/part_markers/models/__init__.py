from .errors import PipelineFailure, PipelineStatus, ProcessingError, ProcessingStage
from .geometry import BoundingBox
from .layout import ENGINE_FRONT_LAYOUT, CalibrationLayout, LayoutEntry
from .markers import (
    Component,
    DigitTemplate,
    MarkerResult,
    RecognizedNumber,
    RecognizedSymbol,
    TextRegion,
    TextRegionList,
)
from .raster import BinaryMask, RasterImage
from .state import PipelineConfig, PipelineState

__all__ = [
    "BinaryMask",
    "BoundingBox",
    "CalibrationLayout",
    "Component",
    "DigitTemplate",
    "ENGINE_FRONT_LAYOUT",
    "LayoutEntry",
    "MarkerResult",
    "PipelineConfig",
    "PipelineFailure",
    "PipelineState",
    "PipelineStatus",
    "ProcessingError",
    "ProcessingStage",
    "RasterImage",
    "RecognizedNumber",
    "RecognizedSymbol",
    "TextRegion",
    "TextRegionList",
]
