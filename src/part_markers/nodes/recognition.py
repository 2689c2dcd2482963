"""
Symbol recognition node.

Two symbol sources produce the same ``RecognizedSymbol`` list:
- local: template matching of the extracted digit candidates
- openai: a remote vision model returning text regions, split per character

A remote failure is recoverable: it is recorded and the local source runs
instead, so grouping and everything downstream never sees the difference.
"""

from __future__ import annotations

import logging
from typing import Protocol

import cv2
from langchain_core.runnables import Runnable

from part_markers import config
from part_markers.models import (
    BoundingBox,
    Component,
    PipelineState,
    PipelineStatus,
    ProcessingError,
    ProcessingStage,
    RasterImage,
    RecognizedSymbol,
    TextRegion,
)
from part_markers.utils.openai_client import (
    recognize_text_regions,
    recognize_text_regions_async,
)

from .template_matching import get_templates, match

logger = logging.getLogger(__name__)


class SymbolSource(Protocol):
    """Anything that turns an image (and its candidates) into symbols."""

    name: str

    def recognize(
        self, image: RasterImage, candidates: list[Component]
    ) -> list[RecognizedSymbol] | ProcessingError: ...


class TemplateSymbolSource:
    """Local template matcher; counts candidates that matched nothing."""

    name = "template"

    def __init__(self, threshold: float = config.MATCH_THRESHOLD):
        self.threshold = threshold
        self.misses = 0

    def recognize(
        self, image: RasterImage, candidates: list[Component]
    ) -> list[RecognizedSymbol]:
        templates = get_templates()
        symbols: list[RecognizedSymbol] = []
        self.misses = 0
        for component in candidates:
            symbol = match(component, image, templates, self.threshold)
            if symbol is None:
                self.misses += 1
            else:
                symbols.append(symbol)
        return symbols


def normalize_confidence(value: float) -> float:
    """Map provider confidence to [0, 1]; values above 1 are percentages."""
    if value > 1.0:
        value = value / 100.0
    return min(1.0, max(0.0, value))


def regions_to_symbols(regions: list[TextRegion]) -> list[RecognizedSymbol]:
    """
    Split provider text regions into per-character symbols.

    Regions containing anything outside the alphabet are dropped. A word's
    width is divided evenly between its characters, which share the word's
    region index so grouping keeps them together.
    """
    symbols: list[RecognizedSymbol] = []
    for index, region in enumerate(regions):
        text = "".join(region.text.split())
        if not text or any(ch not in config.SYMBOL_ALPHABET for ch in text):
            continue
        confidence = normalize_confidence(region.confidence)
        char_width = max(0.0, region.width) / len(text)
        for offset, ch in enumerate(text):
            box = BoundingBox.from_xywh(
                region.x + offset * char_width, region.y, char_width, region.height
            )
            symbols.append(RecognizedSymbol(
                symbol=ch,
                confidence=confidence,
                bounding_box=box,
                source="provider",
                source_region=index,
            ))
    return symbols


class ProviderSymbolSource:
    """Remote vision model; candidates are ignored."""

    name = "provider"

    def __init__(
        self,
        llm: Runnable | None = None,
        timeout: int = config.API_TIMEOUT_SECONDS,
        max_retries: int = config.API_MAX_RETRIES,
    ):
        self.llm = llm
        self.timeout = timeout
        self.max_retries = max_retries

    def recognize(
        self, image: RasterImage, candidates: list[Component]
    ) -> list[RecognizedSymbol] | ProcessingError:
        regions = recognize_text_regions(image, self.llm, self.timeout, self.max_retries)
        if isinstance(regions, ProcessingError):
            return regions
        return regions_to_symbols(regions)

    async def arecognize(
        self, image: RasterImage, candidates: list[Component]
    ) -> list[RecognizedSymbol] | ProcessingError:
        regions = await recognize_text_regions_async(
            image, self.llm, self.timeout, self.max_retries
        )
        if isinstance(regions, ProcessingError):
            return regions
        return regions_to_symbols(regions)


def _recognize_local(state: PipelineState, warnings: list[str]) -> PipelineState:
    source = TemplateSymbolSource(state.config.match_threshold)
    try:
        symbols = source.recognize(state.image, state.candidates)
    except (cv2.error, ValueError) as e:
        return state.with_error(ProcessingError(
            stage=ProcessingStage.RECOGNIZE,
            error_type="template_matching_failed",
            recoverable=False,
            message=f"Template matching failed: {e}",
            details={**state.image_details(), "error": str(e)},
        ))
    if source.misses:
        warnings.append(f"I_LOCAL_MISSES:{source.misses}")
    logger.debug(
        "recognize: %d symbols from %d candidates (%d misses)",
        len(symbols), len(state.candidates), source.misses,
    )
    return state.model_copy(update={
        "symbols": symbols,
        "symbol_source": source.name,
        "rejected_candidates": source.misses,
        "warnings": state.warnings + warnings,
        "status": PipelineStatus.SYMBOLS_RECOGNIZED,
    })


def _after_provider(
    state: PipelineState,
    result: list[RecognizedSymbol] | ProcessingError,
) -> PipelineState:
    if isinstance(result, ProcessingError):
        logger.warning("Provider recognition failed (%s), using templates", result.error_type)
        state = state.model_copy(update={
            "errors": state.errors + [result],
            "notes": state.notes + [f"Text provider failed: {result.message}"],
        })
        return _recognize_local(state, [f"W_PROVIDER_FALLBACK:{result.error_type}"])

    logger.debug("recognize: %d symbols from provider", len(result))
    return state.model_copy(update={
        "symbols": result,
        "symbol_source": ProviderSymbolSource.name,
        "status": PipelineStatus.SYMBOLS_RECOGNIZED,
    })


def recognize(state: PipelineState, llm: Runnable | None = None) -> PipelineState:
    """
    Recognition node.

    Updates state with:
    - symbols: recognized symbols in source-image coordinates
    - symbol_source: "template" or "provider"
    - rejected_candidates: local candidates that matched no template
    - errors / notes / warnings: provider failure and fallback
    """
    cfg = state.config
    if cfg.text_provider != "openai":
        return _recognize_local(state, [])

    provider = ProviderSymbolSource(llm, cfg.api_timeout_seconds, cfg.api_max_retries)
    return _after_provider(state, provider.recognize(state.image, state.candidates))


async def recognize_async(state: PipelineState, llm: Runnable | None = None) -> PipelineState:
    """Async: recognition node with a non-blocking provider call."""
    cfg = state.config
    if cfg.text_provider != "openai":
        return _recognize_local(state, [])

    provider = ProviderSymbolSource(llm, cfg.api_timeout_seconds, cfg.api_max_retries)
    return _after_provider(state, await provider.arecognize(state.image, state.candidates))
