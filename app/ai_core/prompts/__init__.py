"""Prompts package."""

from app.ai_core.prompts.extraction import (
    EXTRACTION_SYSTEM_PROMPT,
    EXTRACTION_USER_PROMPT_TEMPLATE,
)
from app.ai_core.prompts.validation import (
    VALIDATION_SYSTEM_PROMPT,
    VALIDATION_USER_PROMPT_TEMPLATE,
)

__all__ = [
    "EXTRACTION_SYSTEM_PROMPT",
    "EXTRACTION_USER_PROMPT_TEMPLATE",
    "VALIDATION_SYSTEM_PROMPT",
    "VALIDATION_USER_PROMPT_TEMPLATE",
]
