"""Input guard node for rejecting unusable rasters before any processing."""

from part_markers.models import PipelineState, ProcessingError, ProcessingStage


def input_guard(state: PipelineState) -> PipelineState:
    """
    Fail fast on a missing or zero-dimension image.

    Updates state with:
    - errors: non-recoverable input error (status becomes failed)
    """
    image = state.image
    if image is None:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.INPUT,
            error_type="missing_image",
            recoverable=False,
            message="No image supplied",
            details=state.image_details(),
        ))

    if image.width == 0 or image.height == 0:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.INPUT,
            error_type="zero_dimension",
            recoverable=False,
            message=f"Image has zero dimension ({image.width}x{image.height})",
            details=state.image_details(),
        ))

    return state
