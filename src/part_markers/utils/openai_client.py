"""OpenAI vision client for remote text-region recognition."""

import base64
from functools import lru_cache
from typing import Any

from langchain_core.messages import HumanMessage
from langchain_core.runnables import Runnable
from langchain_openai import ChatOpenAI
from openai import APIError, OpenAIError
from pydantic import ValidationError

from part_markers import config
from part_markers.models import (
    ProcessingError,
    ProcessingStage,
    RasterImage,
    TextRegion,
    TextRegionList,
)
from part_markers.utils.cv_utils import encode_png


@lru_cache(maxsize=4)
def _get_model(output_type: type, timeout: int, retries: int) -> Runnable:
    """Get cached OpenAI model instance with structured output."""
    base = ChatOpenAI(
        model=config.OPENAI_VISION_MODEL,
        max_retries=retries,
        timeout=timeout,
    )
    return base.with_structured_output(output_type).with_retry(
        stop_after_attempt=max(1, retries), wait_exponential_jitter=True
    )


def _build_message(image: RasterImage, prompt: str) -> HumanMessage:
    b64 = base64.b64encode(encode_png(image)).decode()
    return HumanMessage(
        content=[
            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{b64}"}},
            {"type": "text", "text": prompt},
        ]
    )


def _error(error_type: str, message: str, image: RasterImage) -> ProcessingError:
    return ProcessingError(
        stage=ProcessingStage.RECOGNIZE,
        error_type=error_type,
        recoverable=True,
        message=message,
        details={"width": image.width, "height": image.height},
    )


def _coerce(result: Any) -> list[TextRegion] | None:
    if isinstance(result, TextRegionList):
        return list(result.regions)
    if isinstance(result, dict):
        return list(TextRegionList.model_validate(result).regions)
    return None


def recognize_text_regions(
    image: RasterImage,
    llm: Runnable | None = None,
    timeout: int = config.API_TIMEOUT_SECONDS,
    max_retries: int = config.API_MAX_RETRIES,
) -> list[TextRegion] | ProcessingError:
    """
    Ask the vision model for every printed number and its pixel box.

    Args:
        image: Diagram to send (encoded as PNG)
        llm: Pre-built runnable returning TextRegionList; defaults to the cached model
        timeout: Request timeout in seconds
        max_retries: Retry budget for the request

    Returns:
        List of TextRegion or a recoverable ProcessingError
    """
    try:
        model = llm or _get_model(TextRegionList, timeout, max_retries)
        result = model.invoke([_build_message(image, config.TEXT_REGION_PROMPT)])
        regions = _coerce(result)
    except ValidationError as e:
        return _error("validation_error", str(e), image)
    except APIError as e:
        return _error("openai_api_error", str(e), image)
    except OpenAIError as e:
        # Raised before any request is made, e.g. no API key configured
        return _error("provider_unavailable", str(e), image)

    if regions is None:
        return _error(
            "unexpected_response",
            f"Provider returned {type(result).__name__}, expected TextRegionList",
            image,
        )
    return regions


async def recognize_text_regions_async(
    image: RasterImage,
    llm: Runnable | None = None,
    timeout: int = config.API_TIMEOUT_SECONDS,
    max_retries: int = config.API_MAX_RETRIES,
) -> list[TextRegion] | ProcessingError:
    """Async version of recognize_text_regions."""
    try:
        model = llm or _get_model(TextRegionList, timeout, max_retries)
        result = await model.ainvoke([_build_message(image, config.TEXT_REGION_PROMPT)])
        regions = _coerce(result)
    except ValidationError as e:
        return _error("validation_error", str(e), image)
    except APIError as e:
        return _error("openai_api_error", str(e), image)
    except OpenAIError as e:
        # Raised before any request is made, e.g. no API key configured
        return _error("provider_unavailable", str(e), image)

    if regions is None:
        return _error(
            "unexpected_response",
            f"Provider returned {type(result).__name__}, expected TextRegionList",
            image,
        )
    return regions
