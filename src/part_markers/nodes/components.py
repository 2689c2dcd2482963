"""Connected-component extraction and digit-candidate filtering."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from part_markers import config
from part_markers.models import (
    BinaryMask,
    BoundingBox,
    Component,
    PipelineState,
    PipelineStatus,
    ProcessingError,
    ProcessingStage,
)

logger = logging.getLogger(__name__)


def extract(mask: BinaryMask) -> list[Component]:
    """
    Label 4-connected foreground regions.

    Every foreground pixel belongs to exactly one component. Components are
    returned in label (raster scan) order.
    """
    data = mask.data
    if data.size == 0 or not data.any():
        return []

    n_labels, labels, stats, _ = cv2.connectedComponentsWithStats(
        data, connectivity=4, ltype=cv2.CV_32S
    )

    ys, xs = np.nonzero(labels)
    pixel_labels = labels[ys, xs]
    order = np.argsort(pixel_labels, kind="stable")
    coords = np.stack([xs[order], ys[order]], axis=1)
    counts = np.bincount(pixel_labels, minlength=n_labels)[1:]
    splits = np.cumsum(counts)[:-1]

    components: list[Component] = []
    for label, chunk in enumerate(np.split(coords, splits), start=1):
        left = int(stats[label, cv2.CC_STAT_LEFT])
        top = int(stats[label, cv2.CC_STAT_TOP])
        width = int(stats[label, cv2.CC_STAT_WIDTH])
        height = int(stats[label, cv2.CC_STAT_HEIGHT])
        box = BoundingBox(x_min=left, y_min=top, x_max=left + width, y_max=top + height)
        components.append(Component(chunk, box))
    return components


def is_digit_candidate(
    component: Component,
    aspect_range: tuple[float, float] = (config.MIN_ASPECT_RATIO, config.MAX_ASPECT_RATIO),
    area_range: tuple[int, int] = (config.MIN_COMPONENT_AREA, config.MAX_COMPONENT_AREA),
    density_range: tuple[float, float] = (config.MIN_DENSITY, config.MAX_DENSITY),
) -> bool:
    # All bounds are exclusive
    return (
        aspect_range[0] < component.aspect_ratio < aspect_range[1]
        and area_range[0] < component.area < area_range[1]
        and density_range[0] < component.density < density_range[1]
    )


def filter_digit_candidates(
    components: list[Component],
    aspect_range: tuple[float, float] = (config.MIN_ASPECT_RATIO, config.MAX_ASPECT_RATIO),
    area_range: tuple[int, int] = (config.MIN_COMPONENT_AREA, config.MAX_COMPONENT_AREA),
    density_range: tuple[float, float] = (config.MIN_DENSITY, config.MAX_DENSITY),
) -> list[Component]:
    """Keep digit-shaped components, largest first."""
    kept = [
        c for c in components
        if is_digit_candidate(c, aspect_range, area_range, density_range)
    ]
    kept.sort(key=lambda c: (-c.area, c.bounding_box.y_min, c.bounding_box.x_min))
    return kept


def extract_components(state: PipelineState) -> PipelineState:
    """
    Component extraction node.

    Updates state with:
    - components_found: number of labelled regions
    - candidates: digit-shaped components, largest first
    """
    cfg = state.config
    if state.mask is None:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.EXTRACT,
            error_type="missing_mask",
            recoverable=False,
            message="No binary mask to extract components from",
            details=state.image_details(),
        ))

    try:
        components = extract(state.mask)
    except cv2.error as e:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.EXTRACT,
            error_type="labelling_failed",
            recoverable=False,
            message=f"Connected-component labelling failed: {e}",
            details={**state.image_details(), "error": str(e)},
        ))

    candidates = filter_digit_candidates(
        components,
        aspect_range=(cfg.min_aspect_ratio, cfg.max_aspect_ratio),
        area_range=(cfg.min_component_area, cfg.max_component_area),
        density_range=(cfg.min_density, cfg.max_density),
    )
    logger.debug("extract: %d components, %d candidates", len(components), len(candidates))
    return state.model_copy(update={
        "components_found": len(components),
        "candidates": candidates,
        "status": PipelineStatus.COMPONENTS_EXTRACTED,
    })
