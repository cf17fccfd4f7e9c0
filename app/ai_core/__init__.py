# AI Core module

"""
AI Core Module - the two AI capabilities behind the extraction pipeline.

Key responsibilities:
- Knowledge extraction from a single source event (stage 1)
- Independent validation of an extraction (stage 2)
- Mapping provider failures to transient vs. content-rejection errors
"""

from app.ai_core.base import Extractor, Validator, classify_provider_error

__all__ = ["Extractor", "Validator", "classify_provider_error"]
