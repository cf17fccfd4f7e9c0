"""
Shared Utility Functions

Common helper functions used across multiple modules.
"""

import hashlib
import random
import re
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime.

    All persisted timestamps are naive UTC so they compare consistently
    on every database backend.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def content_hash(content: str) -> str:
    """SHA-256 hex digest of content after whitespace normalization."""
    normalized = re.sub(r"\s+", " ", content or "").strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def fingerprint_for(source_type: str, external_id: str, content: str) -> str:
    """
    Stable fingerprint of a source event.

    Hash of (source_type, external_id, content-hash). The same message
    redelivered by a provider always produces the same fingerprint; an edited
    message produces a new one.

    Examples:
        fingerprint_for("slack", "C123:1700000000.0001", "Deploys move to Fridays")
        -> "9c1f...e2" (64 hex chars)
    """
    raw = f"{source_type}\x1f{external_id}\x1f{content_hash(content)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def exponential_delay(attempt: int, base: float, cap: float) -> float:
    """min(2**attempt * base, cap)"""
    return min((2 ** max(attempt, 0)) * base, cap)


def full_jitter_backoff(
    attempt: int, base: float, cap: float, rng: Optional[random.Random] = None
) -> float:
    """
    Full-jitter exponential backoff: uniform(0, min(cap, base * 2**attempt)).

    Args:
        attempt: Zero-based count of consecutive failures so far
        base: Base delay in seconds
        cap: Maximum delay in seconds
        rng: Optional random source (tests pass a seeded one)

    Returns:
        Delay in seconds
    """
    upper = exponential_delay(attempt, base, cap)
    return (rng or random).uniform(0, upper)


def slugify(title: str, max_length: int = 60) -> str:
    """
    Turn a title into a file-name friendly slug.

    "Staging URL changed!" -> "staging-url-changed"
    """
    sanitized = re.sub(r"[^a-zA-Z0-9\s-]", "", title or "")  # Remove special chars
    sanitized = re.sub(r"[\s-]+", "-", sanitized.strip())  # Collapse separators
    sanitized = sanitized.lower()[:max_length].strip("-")
    return sanitized or "untitled"


def truncate(text: Optional[str], limit: int = 500) -> str:
    """Shorten text for log messages and error contexts."""
    if not text:
        return ""
    return text if len(text) <= limit else text[: limit - 3] + "..."
