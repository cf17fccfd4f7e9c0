"""
Knowledge Models

Strict result structures returned by the two AI capabilities.
Provider output that does not fit these models is treated as a content
rejection, never passed through as loose dictionaries.
"""

from typing import Optional
from pydantic import BaseModel, Field, model_validator

from app.models.enums import KnowledgeType


class ExtractionResult(BaseModel):
    """Output of the Extractor capability (stage 1)."""

    found: bool = Field(
        ...,
        description="True only if the text contains new, actionable knowledge worth documenting",
    )
    title: str = Field(
        "", description="Clear, professional title for the knowledge (empty if not found)"
    )
    proposed_content: str = Field(
        "",
        description="Core content written as clean documentation, not as a quote (empty if not found)",
    )
    knowledge_type: Optional[KnowledgeType] = Field(
        None,
        description="policy, sop, decision, fact, process, engineering or product",
    )
    rationale: str = Field(..., description="Why this is or is not knowledge")
    confidence: int = Field(
        0, ge=0, le=100, description="Extraction confidence (0-100), be conservative"
    )

    @model_validator(mode="after")
    def _require_content_when_found(self) -> "ExtractionResult":
        if self.found and (not self.title.strip() or not self.proposed_content.strip()):
            raise ValueError("found=true requires a title and proposed_content")
        return self


class ValidationResult(BaseModel):
    """Output of the Validator capability (stage 2)."""

    confidence: int = Field(..., ge=0, le=100, description="Confidence (0-100)")
    approved_for_suggestion: bool = Field(
        ...,
        description="True only if the extraction is accurate, actionable and belongs in the knowledge base",
    )
    reasoning: str = Field(..., description="Verification reasoning and any red flags")


class PageMatch(BaseModel):
    """A destination page that best matches a suggestion title."""

    page_ref: str
    title: str
    content: str = ""
