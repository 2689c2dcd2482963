"""LangGraph pipeline for part-marker recognition."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Union

import numpy as np
from langchain_core.runnables import Runnable
from langgraph.graph import END, StateGraph

from part_markers.models import (
    MarkerResult,
    PipelineConfig,
    PipelineFailure,
    PipelineState,
    PipelineStatus,
    ProcessingError,
    ProcessingStage,
    RasterImage,
)
from part_markers.nodes.calibration import calibrate_numbers, validate_numbers
from part_markers.nodes.components import extract_components
from part_markers.nodes.grouping import group_symbols
from part_markers.nodes.input_guard import input_guard
from part_markers.nodes.preprocessing import preprocess
from part_markers.nodes.recognition import recognize, recognize_async
from part_markers.utils import cv_utils

logger = logging.getLogger(__name__)

ImageSource = Union[RasterImage, np.ndarray, bytes, str, Path]


def _stopped(state: PipelineState, stage: ProcessingStage) -> bool:
    for err in state.errors:
        if err.stage == stage and not err.recoverable:
            return True
    return state.status == PipelineStatus.FAILED


def _route_input_guard(state: PipelineState) -> str:
    if _stopped(state, ProcessingStage.INPUT):
        return END
    return "preprocess"


def _route_preprocess(state: PipelineState) -> str:
    if _stopped(state, ProcessingStage.PREPROCESS):
        return END
    if state.mask is not None:
        return "extract"
    return END


def _route_extract(state: PipelineState) -> str:
    if _stopped(state, ProcessingStage.EXTRACT):
        return END
    return "recognize"


def _route_recognize(state: PipelineState) -> str:
    if _stopped(state, ProcessingStage.RECOGNIZE):
        return END
    return "group"


def _route_group(state: PipelineState) -> str:
    if _stopped(state, ProcessingStage.GROUP):
        return END
    return "validate"


def _route_validate(state: PipelineState) -> str:
    if _stopped(state, ProcessingStage.VALIDATE):
        return END
    return "calibrate"


def _build_graph(recognize_node) -> Any:
    graph = StateGraph(PipelineState)

    graph.add_node("input_guard", input_guard)
    graph.add_node("preprocess", preprocess)
    graph.add_node("extract", extract_components)
    graph.add_node("recognize", recognize_node)
    graph.add_node("group", group_symbols)
    graph.add_node("validate", validate_numbers)
    graph.add_node("calibrate", calibrate_numbers)

    graph.set_entry_point("input_guard")

    graph.add_conditional_edges(
        "input_guard", _route_input_guard, {"preprocess": "preprocess", END: END}
    )
    graph.add_conditional_edges(
        "preprocess", _route_preprocess, {"extract": "extract", END: END}
    )
    graph.add_conditional_edges(
        "extract", _route_extract, {"recognize": "recognize", END: END}
    )
    graph.add_conditional_edges("recognize", _route_recognize, {"group": "group", END: END})
    graph.add_conditional_edges("group", _route_group, {"validate": "validate", END: END})
    graph.add_conditional_edges(
        "validate", _route_validate, {"calibrate": "calibrate", END: END}
    )
    graph.add_edge("calibrate", END)

    return graph.compile()


def create_pipeline(llm: Runnable | None = None):
    if llm is None:
        return _build_graph(recognize)

    def _recognize(state: PipelineState) -> PipelineState:
        return recognize(state, llm=llm)

    return _build_graph(_recognize)


def create_async_pipeline(llm: Runnable | None = None):
    """Create async pipeline whose provider call does not block the event loop."""

    async def _recognize(state: PipelineState) -> PipelineState:
        return await recognize_async(state, llm=llm)

    return _build_graph(_recognize)


def load_source(source: ImageSource) -> RasterImage | ProcessingError:
    """Turn a path, encoded bytes, pixel array or RasterImage into a RasterImage."""
    if isinstance(source, RasterImage):
        return source
    if isinstance(source, (bytes, bytearray)):
        return cv_utils.decode_image(bytes(source))
    if isinstance(source, (str, Path)):
        return cv_utils.load_image(source)
    try:
        return RasterImage(source)
    except ValueError as e:
        return ProcessingError(
            stage=ProcessingStage.INPUT,
            error_type="malformed_pixel_buffer",
            recoverable=False,
            message=str(e),
            details={"shape": list(getattr(source, "shape", ()))},
        )


def _initial_state(source: ImageSource, config: PipelineConfig | None) -> PipelineState:
    state = PipelineState(config=config or PipelineConfig())
    image = load_source(source)
    if isinstance(image, ProcessingError):
        logger.warning("Could not load image: %s", image.message)
        return state.with_error(image)

    info = cv_utils.get_image_info(image.pixels)
    logger.debug(
        "loaded %dx%d image (%d channels, %.2f MP)",
        info.width, info.height, info.channels, info.megapixels,
    )
    return state.model_copy(update={"image": image})


def _finish(result: Any) -> PipelineState:
    state = result if isinstance(result, PipelineState) else PipelineState(**result)
    if state.failure is not None and state.status != PipelineStatus.FAILED:
        state = state.model_copy(update={"status": PipelineStatus.FAILED, "results": []})
    return state


def run_pipeline(
    source: ImageSource,
    config: PipelineConfig | None = None,
    llm: Runnable | None = None,
) -> PipelineState:
    """
    Run every stage on one image.

    The returned state is either done (results possibly empty) or failed
    (results empty, ``state.failure`` set).
    """
    initial = _initial_state(source, config)
    if initial.status == PipelineStatus.FAILED:
        return initial
    graph = pipeline if llm is None else create_pipeline(llm)
    return _finish(graph.invoke(initial))


async def run_pipeline_async(
    source: ImageSource,
    config: PipelineConfig | None = None,
    llm: Runnable | None = None,
) -> PipelineState:
    """Async pipeline runner for concurrent image processing."""
    initial = _initial_state(source, config)
    if initial.status == PipelineStatus.FAILED:
        return initial
    graph = async_pipeline if llm is None else create_async_pipeline(llm)
    return _finish(await graph.ainvoke(initial))


def recognize_markers(
    source: ImageSource,
    config: PipelineConfig | None = None,
    llm: Runnable | None = None,
) -> list[MarkerResult]:
    """
    Convenience wrapper returning only the marker list.

    Raises:
        PipelineFailure: the run ended in the failed state
    """
    state = run_pipeline(source, config, llm)
    if state.failure is not None:
        raise PipelineFailure(state.failure)
    return state.results


pipeline = create_pipeline()
async_pipeline = create_async_pipeline()
