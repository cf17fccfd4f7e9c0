"""
Knowledge Extraction Module

Stage 1 of the pipeline: asks the LLM whether a source event contains
knowledge and, if it does, for a documentation-ready rewrite of it.
"""

import logging
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage

from app.ai_core.base import Extractor, invoke_structured
from app.ai_core.prompts.extraction import (
    EXTRACTION_SYSTEM_PROMPT,
    EXTRACTION_USER_PROMPT_TEMPLATE,
)
from app.config import Settings, get_settings
from app.models.events import SourceEvent
from app.models.knowledge import ExtractionResult

logger = logging.getLogger(__name__)

_SOURCE_LABELS = {
    "slack": "Slack",
    "google_drive": "Google Drive",
    "zoom": "a Zoom meeting transcript",
    "google_meet": "a Google Meet transcript",
    "simulated": "a simulated message",
}


class LLMExtractor(Extractor):
    """
    Extractor backed by a chat model behind the SAP gen_ai_hub proxy.

    Output is parsed straight into ExtractionResult via structured output.
    """

    def __init__(self, settings: Optional[Settings] = None, llm=None):
        """
        Args:
            settings: Model name, temperature and timeout (defaults to app settings)
            llm: Pre-built chat model, mainly for tests
        """
        settings = settings or get_settings()
        self.timeout = settings.ai_timeout_seconds

        if llm is None:
            from gen_ai_hub.proxy.langchain.openai import ChatOpenAI
            from gen_ai_hub.proxy.core.proxy_clients import get_proxy_client

            self.proxy_client = get_proxy_client("gen-ai-hub")
            llm = ChatOpenAI(
                proxy_model_name=settings.extractor_model,
                proxy_client=self.proxy_client,
                temperature=settings.temperature,
            )

        self.llm = llm
        self.structured_llm = llm.with_structured_output(ExtractionResult)
        logger.info(f"LLMExtractor initialized (model: {settings.extractor_model})")

    async def extract(self, event: SourceEvent) -> ExtractionResult:
        user_prompt = EXTRACTION_USER_PROMPT_TEMPLATE.format(
            source=_SOURCE_LABELS.get(event.source_type.value, event.source_type.value),
            context=self._format_context(event),
            text=event.content,
        )
        messages = [
            SystemMessage(content=EXTRACTION_SYSTEM_PROMPT),
            HumanMessage(content=user_prompt),
        ]

        result = await invoke_structured(
            self.structured_llm,
            messages,
            self.timeout,
            stage="Extractor",
            output_model=ExtractionResult,
        )

        logger.info(
            f"Extraction for {event.external_id}: found={result.found} "
            f"(confidence: {result.confidence})"
        )
        return result

    def _format_context(self, event: SourceEvent) -> str:
        """Channel, author and thread context as a prompt section."""
        payload = event.raw_payload
        parts = []
        channel = payload.get("channel_name") or event.channel
        if channel:
            parts.append(f"Channel: #{channel}")
        if payload.get("user_name"):
            author = f"Author: {payload['user_name']}"
            if payload.get("user_title"):
                author += f" ({payload['user_title']})"
            parts.append(author)
        thread = payload.get("thread_context") or []
        if thread:
            lines = "\n".join(f'  {i}. "{m}"' for i, m in enumerate(thread, 1))
            parts.append(f"Thread context (previous messages):\n{lines}")

        if not parts:
            return ""
        return "\nContext:\n" + "\n".join(parts) + "\n"
