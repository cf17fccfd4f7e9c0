"""
Result values passed through the job queue and sync applier.

Retry decisions are made from these values instead of from exceptions
unwinding through the worker.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class JobOutcome:
    """Result of running one job handler."""

    ok: bool
    error: Optional[str] = None
    retryable: bool = True
    detail: Optional[str] = None  # e.g. "suggestion_created", "not_knowledge"

    @classmethod
    def success(cls, detail: Optional[str] = None) -> "JobOutcome":
        return cls(ok=True, detail=detail)

    @classmethod
    def retry(cls, error: str) -> "JobOutcome":
        return cls(ok=False, error=error, retryable=True)

    @classmethod
    def terminal(cls, error: str) -> "JobOutcome":
        return cls(ok=False, error=error, retryable=False)


@dataclass
class SyncResult:
    """Result of writing one suggestion to the destination store."""

    ok: bool
    page_ref: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = True


@dataclass
class BulkFailure:
    id: str
    reason: str


@dataclass
class BulkResult:
    """Per-item outcome of a bulk approve/reject."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[BulkFailure] = field(default_factory=list)
