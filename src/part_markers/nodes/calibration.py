"""
Validation and calibration of grouped numbers.

Validation keeps numbers that look like known marker ids and puts them in
reading order. Calibration checks whether the measured positions are
plausible; when every box is collapsed into a small corner of the image the
positions are re-derived from a CalibrationLayout (or a radial placement for
ids the layout does not know).
"""

from __future__ import annotations

import logging
import math
import zlib

from part_markers import config
from part_markers.models import (
    BoundingBox,
    CalibrationLayout,
    MarkerResult,
    PipelineState,
    PipelineStatus,
    ProcessingError,
    ProcessingStage,
    RecognizedNumber,
)

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION
# =============================================================================


def is_expected(
    number: RecognizedNumber,
    expected_ids: frozenset[str],
    partial_confidence: float = config.PARTIAL_MATCH_CONFIDENCE,
) -> bool:
    """Exact id match, or a confident substring/superstring of one."""
    text = number.text
    if text in expected_ids:
        return True
    if number.confidence <= partial_confidence:
        return False
    return any(text in expected or expected in text for expected in expected_ids)


def reading_order(
    numbers: list[RecognizedNumber],
    line_tolerance: float = config.LINE_TOLERANCE_PX,
) -> list[RecognizedNumber]:
    """Top-to-bottom by line band, then left-to-right within a line."""
    by_y = sorted(numbers, key=lambda n: (n.bounding_box.y_min, n.bounding_box.x_min))
    lines: list[list[RecognizedNumber]] = []
    line_start = 0.0
    for number in by_y:
        y = number.bounding_box.y_min
        if not lines or y - line_start >= line_tolerance:
            lines.append([])
            line_start = y
        lines[-1].append(number)
    return [
        n
        for line in lines
        for n in sorted(line, key=lambda n: (n.bounding_box.x_min, n.bounding_box.y_min))
    ]


def validate(
    numbers: list[RecognizedNumber],
    expected_ids: frozenset[str],
    partial_confidence: float = config.PARTIAL_MATCH_CONFIDENCE,
    line_tolerance: float = config.LINE_TOLERANCE_PX,
) -> list[RecognizedNumber]:
    """Keep plausible marker ids in reading order. An empty id set keeps everything."""
    if expected_ids:
        kept = [n for n in numbers if is_expected(n, expected_ids, partial_confidence)]
    else:
        kept = list(numbers)
    return reading_order(kept, line_tolerance)


# =============================================================================
# CALIBRATION
# =============================================================================


def coordinate_spread(numbers: list[RecognizedNumber]) -> tuple[float, float]:
    """Range of box top-left corners along x and y."""
    if not numbers:
        return 0.0, 0.0
    xs = [n.bounding_box.x_min for n in numbers]
    ys = [n.bounding_box.y_min for n in numbers]
    return max(xs) - min(xs), max(ys) - min(ys)


def is_degenerate(
    numbers: list[RecognizedNumber],
    width: float,
    height: float,
    spread_fraction: float = config.DEGENERATE_SPREAD_FRACTION,
) -> bool:
    """
    True when both spreads fall below ``spread_fraction`` of the image size.

    A lone number has zero spread and counts as degenerate; only an empty
    set does not.
    """
    if not numbers:
        return False
    spread_x, spread_y = coordinate_spread(numbers)
    return spread_x < spread_fraction * width and spread_y < spread_fraction * height


def _radial_seed(marker_id: str) -> tuple[int, float]:
    """(seed, phase in steps). Each id class sits on its own set of spokes."""
    try:
        value = int(marker_id)
    except ValueError:
        return zlib.crc32(marker_id.encode("utf-8")) % config.RADIAL_HASH_MODULUS, 0.25
    if value < 0:
        return -value, 0.5
    return value, 0.0


def radial_position(marker_id: str, width: float, height: float) -> BoundingBox:
    """
    Deterministic spot around the image centre, keyed by the id.

    Ids step around the circle; every full turn moves to a smaller ring, so
    integer ids never share a position.
    """
    seed, phase = _radial_seed(marker_id)
    steps_per_turn = round(360.0 / config.RADIAL_STEP_DEGREES)
    turn = seed // steps_per_turn
    angle = math.radians((seed + phase) * config.RADIAL_STEP_DEGREES)
    radius = (
        config.RADIAL_RADIUS_FRACTION * min(width, height)
        / (1.0 + config.RADIAL_RING_SHRINK * turn)
    )
    box_w = config.RADIAL_BOX_FRACTION * width
    box_h = config.RADIAL_BOX_FRACTION * height
    cx = width / 2.0 + radius * math.cos(angle)
    cy = height / 2.0 + radius * math.sin(angle)
    box = BoundingBox.from_xywh(cx - box_w / 2.0, cy - box_h / 2.0, box_w, box_h)
    return box.clamp(width, height)


def calibrate(
    numbers: list[RecognizedNumber],
    width: float,
    height: float,
    layout: CalibrationLayout,
    spread_fraction: float = config.DEGENERATE_SPREAD_FRACTION,
    confidence_factor: float = config.CALIBRATED_CONFIDENCE_FACTOR,
) -> tuple[list[RecognizedNumber], bool]:
    """
    Pass measured boxes through (clamped to the image) or, when the set is
    degenerate, replace every box from the layout.

    Returns:
        (numbers, fallback_applied)
    """
    if not is_degenerate(numbers, width, height, spread_fraction):
        clamped = [
            n.model_copy(update={"bounding_box": n.bounding_box.clamp(width, height)})
            for n in numbers
        ]
        return clamped, False

    placed: list[RecognizedNumber] = []
    for number in numbers:
        box = layout.scaled(number.text, width, height)
        source = "layout"
        if box is None:
            box = radial_position(number.text, width, height)
            source = "radial"
        placed.append(number.model_copy(update={
            "bounding_box": box.clamp(width, height),
            "confidence": number.confidence * confidence_factor,
            "box_source": source,
        }))
    return placed, True


# =============================================================================
# MANUAL CORRECTION
# =============================================================================


def adjust_box(box: BoundingBox, dx: float = 0.0, dy: float = 0.0, scale: float = 1.0) -> BoundingBox:
    """Shift a box and scale its size about the top-left corner."""
    if scale < 0:
        raise ValueError(f"scale must be non-negative, got {scale}")
    return BoundingBox.from_xywh(
        box.x_min + dx, box.y_min + dy, box.width * scale, box.height * scale
    )


def translate_to_anchor(
    numbers: list[RecognizedNumber],
    anchor_id: str,
    position: tuple[float, float],
) -> list[RecognizedNumber]:
    """
    Shift every box by the offset that moves ``anchor_id``'s box to ``position``
    (its new top-left corner).

    Raises:
        KeyError: no number has text ``anchor_id``
    """
    anchor = next((n for n in numbers if n.text == anchor_id), None)
    if anchor is None:
        raise KeyError(anchor_id)
    dx = position[0] - anchor.bounding_box.x_min
    dy = position[1] - anchor.bounding_box.y_min
    return [
        n.model_copy(update={"bounding_box": adjust_box(n.bounding_box, dx, dy)})
        for n in numbers
    ]


def to_results(
    numbers: list[RecognizedNumber],
    layout: CalibrationLayout | None = None,
) -> list[MarkerResult]:
    return [
        MarkerResult(
            id=n.text,
            bounding_box=n.bounding_box,
            confidence=n.confidence,
            group=layout.group_of(n.text) if layout is not None else None,
            box_source=n.box_source,
        )
        for n in numbers
    ]


# =============================================================================
# NODES
# =============================================================================


def validate_numbers(state: PipelineState) -> PipelineState:
    """
    Validation node.

    Updates state with:
    - validated: numbers matching the expected ids, in reading order
    """
    cfg = state.config
    try:
        validated = validate(
            state.numbers,
            cfg.resolved_expected_ids(),
            cfg.partial_match_confidence,
            cfg.line_tolerance_px,
        )
    except ValueError as e:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.VALIDATE,
            error_type="validation_failed",
            recoverable=False,
            message=f"Validation failed: {e}",
            details={**state.image_details(), "error": str(e)},
        ))
    logger.debug("validate: kept %d of %d numbers", len(validated), len(state.numbers))
    return state.model_copy(update={
        "validated": validated,
        "status": PipelineStatus.VALIDATED,
    })


def calibrate_numbers(state: PipelineState) -> PipelineState:
    """
    Calibration node.

    Updates state with:
    - validated: numbers with trusted (or re-derived) boxes
    - calibration_applied: True when the layout fallback replaced positions
    - results: MarkerResult list for downstream collaborators
    """
    cfg = state.config
    image = state.image
    try:
        numbers, applied = calibrate(
            state.validated,
            image.width,
            image.height,
            cfg.layout,
            cfg.degenerate_spread_fraction,
            cfg.calibrated_confidence_factor,
        )
    except ValueError as e:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.CALIBRATE,
            error_type="calibration_failed",
            recoverable=False,
            message=f"Calibration failed: {e}",
            details={**state.image_details(), "error": str(e)},
        ))

    warnings = list(state.warnings)
    notes = list(state.notes)
    if applied:
        logger.info(
            "Degenerate coordinates for %d numbers, using layout %r",
            len(numbers), cfg.layout.name,
        )
        warnings.append(f"I_CALIBRATION_FALLBACK:{len(numbers)}")
        notes.append(f"Positions re-derived from calibration layout '{cfg.layout.name}'")

    return state.model_copy(update={
        "validated": numbers,
        "calibration_applied": applied,
        "results": to_results(numbers, cfg.layout),
        "warnings": warnings,
        "notes": notes,
        "status": PipelineStatus.DONE,
    })
