"""Grouping of adjacent symbols into multi-character numbers."""

from __future__ import annotations

import logging
from collections import deque

from part_markers import config
from part_markers.models import (
    BoundingBox,
    PipelineState,
    PipelineStatus,
    ProcessingError,
    ProcessingStage,
    RecognizedNumber,
    RecognizedSymbol,
)

logger = logging.getLogger(__name__)


def _canonical_key(symbol: RecognizedSymbol) -> tuple:
    b = symbol.bounding_box
    return (b.x_min, b.y_min, b.x_max, b.y_max, symbol.symbol, -symbol.confidence)


def are_adjacent(
    a: RecognizedSymbol,
    b: RecognizedSymbol,
    gap_factor: float = config.GROUP_GAP_FACTOR,
    line_factor: float = config.GROUP_LINE_FACTOR,
) -> bool:
    """
    Two symbols belong to the same number when their centres are close
    horizontally and nearly level, both relative to the taller glyph.
    Characters split out of one provider word are always adjacent.
    """
    if a.source_region is not None and a.source_region == b.source_region:
        return True
    (ax, ay), (bx, by) = a.bounding_box.center, b.bounding_box.center
    height = max(a.bounding_box.height, b.bounding_box.height)
    return abs(ax - bx) < gap_factor * height and abs(ay - by) < line_factor * height


def _to_number(members: list[RecognizedSymbol]) -> RecognizedNumber:
    members = sorted(members, key=lambda s: (s.bounding_box.x_min, s.bounding_box.y_min))
    box: BoundingBox = members[0].bounding_box
    for member in members[1:]:
        box = box.union(member.bounding_box)
    confidence = sum(m.confidence for m in members) / len(members)
    return RecognizedNumber(
        text="".join(m.symbol for m in members),
        bounding_box=box,
        confidence=min(1.0, max(0.0, confidence)),
        members=members,
    )


def group(
    symbols: list[RecognizedSymbol],
    gap_factor: float = config.GROUP_GAP_FACTOR,
    line_factor: float = config.GROUP_LINE_FACTOR,
) -> list[RecognizedNumber]:
    """
    Merge adjacent symbols into numbers.

    Adjacency is symmetric and chained (a-b and b-c puts a, b and c in one
    number), so the result does not depend on input order. Each symbol ends
    up in exactly one number; member text reads left to right.
    """
    ordered = sorted(symbols, key=_canonical_key)
    seen = [False] * len(ordered)
    numbers: list[RecognizedNumber] = []

    for start in range(len(ordered)):
        if seen[start]:
            continue
        seen[start] = True
        queue = deque([start])
        members: list[RecognizedSymbol] = []
        while queue:
            i = queue.popleft()
            members.append(ordered[i])
            for j in range(len(ordered)):
                if not seen[j] and are_adjacent(ordered[i], ordered[j], gap_factor, line_factor):
                    seen[j] = True
                    queue.append(j)
        numbers.append(_to_number(members))

    return numbers


def group_symbols(state: PipelineState) -> PipelineState:
    """
    Grouping node.

    Updates state with:
    - numbers: RecognizedNumber per cluster of adjacent symbols
    """
    cfg = state.config
    try:
        numbers = group(state.symbols, cfg.group_gap_factor, cfg.group_line_factor)
    except ValueError as e:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.GROUP,
            error_type="grouping_failed",
            recoverable=False,
            message=f"Grouping failed: {e}",
            details={**state.image_details(), "error": str(e)},
        ))
    logger.debug("group: %d symbols -> %d numbers", len(state.symbols), len(numbers))
    return state.model_copy(update={
        "numbers": numbers,
        "status": PipelineStatus.NUMBERS_GROUPED,
    })
