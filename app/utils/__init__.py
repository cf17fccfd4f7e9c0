"""
Utility package exports
"""

from app.utils.helpers import (
    utcnow,
    content_hash,
    fingerprint_for,
    exponential_delay,
    full_jitter_backoff,
    slugify,
    truncate,
)

__all__ = [
    "utcnow",
    "content_hash",
    "fingerprint_for",
    "exponential_delay",
    "full_jitter_backoff",
    "slugify",
    "truncate",
]
