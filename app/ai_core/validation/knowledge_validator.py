"""
Knowledge Validation Module

Stage 2 of the pipeline: an independent LLM call that checks an extraction
against the original text and the destination page it would change.
"""

import logging
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage

from app.ai_core.base import Validator, invoke_structured
from app.ai_core.prompts.validation import (
    VALIDATION_SYSTEM_PROMPT,
    VALIDATION_USER_PROMPT_TEMPLATE,
)
from app.config import Settings, get_settings
from app.models.knowledge import ExtractionResult, ValidationResult

logger = logging.getLogger(__name__)


class LLMValidator(Validator):
    """Validator backed by a chat model behind the SAP gen_ai_hub proxy."""

    def __init__(self, settings: Optional[Settings] = None, llm=None):
        settings = settings or get_settings()
        self.timeout = settings.ai_timeout_seconds

        if llm is None:
            from gen_ai_hub.proxy.langchain.openai import ChatOpenAI
            from gen_ai_hub.proxy.core.proxy_clients import get_proxy_client

            self.proxy_client = get_proxy_client("gen-ai-hub")
            llm = ChatOpenAI(
                proxy_model_name=settings.validator_model,
                proxy_client=self.proxy_client,
                temperature=0.0,  # Deterministic verification
            )

        self.llm = llm
        self.structured_llm = llm.with_structured_output(ValidationResult)
        logger.info(f"LLMValidator initialized (model: {settings.validator_model})")

    async def validate(
        self,
        extraction: ExtractionResult,
        current_content: Optional[str] = None,
        original_text: str = "",
    ) -> ValidationResult:
        user_prompt = VALIDATION_USER_PROMPT_TEMPLATE.format(
            original_text=original_text,
            knowledge_type=(
                extraction.knowledge_type.value if extraction.knowledge_type else "unknown"
            ),
            title=extraction.title,
            proposed_content=extraction.proposed_content,
            rationale=extraction.rationale,
            current_content=current_content or "(new page)",
        )
        messages = [
            SystemMessage(content=VALIDATION_SYSTEM_PROMPT),
            HumanMessage(content=user_prompt),
        ]

        result = await invoke_structured(
            self.structured_llm,
            messages,
            self.timeout,
            stage="Validator",
            output_model=ValidationResult,
        )

        logger.info(
            f"Validation of '{extraction.title}': approved={result.approved_for_suggestion} "
            f"(confidence: {result.confidence})"
        )
        return result
