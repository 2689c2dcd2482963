from enum import Enum
from typing import Any

from pydantic import BaseModel


class ProcessingStage(str, Enum):
    INPUT = "input"
    PREPROCESS = "preprocess"
    EXTRACT = "extract"
    RECOGNIZE = "recognize"
    GROUP = "group"
    VALIDATE = "validate"
    CALIBRATE = "calibrate"


class PipelineStatus(str, Enum):
    LOADED = "loaded"
    PREPROCESSED = "preprocessed"
    COMPONENTS_EXTRACTED = "components_extracted"
    SYMBOLS_RECOGNIZED = "symbols_recognized"
    NUMBERS_GROUPED = "numbers_grouped"
    VALIDATED = "validated"
    DONE = "done"
    FAILED = "failed"


class ProcessingError(BaseModel):
    stage: ProcessingStage
    error_type: str
    recoverable: bool
    message: str
    details: dict[str, Any] = {}


class PipelineFailure(Exception):
    """Raised by the convenience API when a run ends in the failed state."""

    def __init__(self, error: ProcessingError):
        super().__init__(f"[{error.stage.value}] {error.message}")
        self.error = error
