from typing import Literal

from pydantic import BaseModel, ConfigDict

from part_markers import config

from .errors import PipelineStatus, ProcessingError
from .layout import ENGINE_FRONT_LAYOUT, CalibrationLayout
from .markers import Component, MarkerResult, RecognizedNumber, RecognizedSymbol
from .raster import BinaryMask, RasterImage


class PipelineConfig(BaseModel):
    # Preprocessing
    low_percentile: float = config.LOW_PERCENTILE
    high_percentile: float = config.HIGH_PERCENTILE
    threshold_offset: int = config.THRESHOLD_OFFSET
    min_threshold_window: int = config.MIN_THRESHOLD_WINDOW
    min_foreground_neighbors: int = config.MIN_FOREGROUND_NEIGHBORS

    # Candidate filter
    min_aspect_ratio: float = config.MIN_ASPECT_RATIO
    max_aspect_ratio: float = config.MAX_ASPECT_RATIO
    min_component_area: int = config.MIN_COMPONENT_AREA
    max_component_area: int = config.MAX_COMPONENT_AREA
    min_density: float = config.MIN_DENSITY
    max_density: float = config.MAX_DENSITY

    # Matching
    match_threshold: float = config.MATCH_THRESHOLD

    # Grouping
    group_gap_factor: float = config.GROUP_GAP_FACTOR
    group_line_factor: float = config.GROUP_LINE_FACTOR

    # Validation / calibration
    expected_ids: frozenset[str] | None = None
    partial_match_confidence: float = config.PARTIAL_MATCH_CONFIDENCE
    line_tolerance_px: float = config.LINE_TOLERANCE_PX
    degenerate_spread_fraction: float = config.DEGENERATE_SPREAD_FRACTION
    calibrated_confidence_factor: float = config.CALIBRATED_CONFIDENCE_FACTOR
    layout: CalibrationLayout = ENGINE_FRONT_LAYOUT

    # Symbol source
    text_provider: Literal["local", "openai"] = "local"
    api_timeout_seconds: int = config.API_TIMEOUT_SECONDS
    api_max_retries: int = config.API_MAX_RETRIES

    def resolved_expected_ids(self) -> frozenset[str]:
        if self.expected_ids is not None:
            return self.expected_ids
        return self.layout.ids


class PipelineState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    image: RasterImage | None = None
    config: PipelineConfig = PipelineConfig()
    status: PipelineStatus = PipelineStatus.LOADED

    threshold_window: int | None = None
    mask: BinaryMask | None = None

    components_found: int = 0
    candidates: list[Component] = []

    symbols: list[RecognizedSymbol] = []
    symbol_source: Literal["template", "provider"] | None = None
    rejected_candidates: int = 0

    numbers: list[RecognizedNumber] = []
    validated: list[RecognizedNumber] = []
    calibration_applied: bool = False

    results: list[MarkerResult] = []

    errors: list[ProcessingError] = []
    warnings: list[str] = []
    notes: list[str] = []

    @property
    def failure(self) -> ProcessingError | None:
        for err in self.errors:
            if not err.recoverable:
                return err
        return None

    def with_error(self, error: ProcessingError) -> "PipelineState":
        update: dict = {"errors": self.errors + [error]}
        if not error.recoverable:
            update["status"] = PipelineStatus.FAILED
            update["results"] = []
        return self.model_copy(update=update)

    def image_details(self) -> dict[str, int | None]:
        if self.image is None:
            return {"width": None, "height": None}
        return {"width": self.image.width, "height": self.image.height}
