"""
AI capability interfaces

The pipeline depends only on these two contracts. Implementations raise
TransientProviderError for failures worth retrying and ContentRejectionError
for malformed or refused output.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import ValidationError

from app.errors import ContentRejectionError, PipelineError, TransientProviderError
from app.models.events import SourceEvent
from app.models.knowledge import ExtractionResult, ValidationResult

logger = logging.getLogger(__name__)

# HTTP statuses a provider may recover from
_TRANSIENT_STATUS = {408, 409, 425, 429}


class Extractor(ABC):
    """Stage 1: decide whether an event carries knowledge."""

    @abstractmethod
    async def extract(self, event: SourceEvent) -> ExtractionResult:
        ...


class Validator(ABC):
    """Stage 2: independently verify an extraction."""

    @abstractmethod
    async def validate(
        self,
        extraction: ExtractionResult,
        current_content: Optional[str] = None,
        original_text: str = "",
    ) -> ValidationResult:
        ...


def classify_provider_error(error: Exception, stage: str) -> PipelineError:
    """
    Map an exception raised by an LLM call to the pipeline error taxonomy.

    Timeouts, rate limits and server errors are transient. Output that fails
    validation, and 4xx refusals, are content rejections.
    """
    if isinstance(error, PipelineError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return TransientProviderError(f"{stage} timed out")
    if isinstance(error, (ValidationError, ValueError)):
        return ContentRejectionError(f"{stage} returned malformed output: {error}")

    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(getattr(error, "response", None), "status_code", None)
    if isinstance(status, int) and 400 <= status < 500 and status not in _TRANSIENT_STATUS:
        return ContentRejectionError(f"{stage} refused the request ({status}): {error}")

    # Connection resets, 5xx, 429 and anything unrecognized: try again later
    return TransientProviderError(f"{stage} provider error: {error}")


async def invoke_structured(runnable, messages, timeout: float, stage: str, output_model):
    """Run a structured-output runnable with a deadline and mapped errors."""
    try:
        result = await asyncio.wait_for(runnable.ainvoke(messages), timeout=timeout)
        if result is None:
            raise ContentRejectionError(f"{stage} returned empty output")
        if not isinstance(result, output_model):
            result = output_model.model_validate(result)
    except Exception as e:
        mapped = classify_provider_error(e, stage)
        logger.warning(f"{stage} call failed: {mapped}")
        raise mapped from e
    return result
