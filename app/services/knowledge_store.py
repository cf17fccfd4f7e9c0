"""
Destination knowledge store contract.

The sync applier is the only writer. write_page must be idempotent on
identical content: writing the same title and body twice yields the same
page reference and no second revision.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from app.models.knowledge import PageMatch
from app.utils.helpers import content_hash, slugify

logger = logging.getLogger(__name__)


class KnowledgeStore(ABC):
    """Write sink for approved knowledge."""

    @abstractmethod
    async def write_page(
        self,
        page_ref: Optional[str],
        title: str,
        content: str,
        knowledge_type: Optional[str] = None,
    ) -> str:
        """
        Create or update a page and return its reference.

        Args:
            page_ref: Existing page to update, or None to create one
            title: Page title
            content: Full page body
            knowledge_type: Used to place new pages

        Raises:
            SyncError: The write failed and may be retried
        """

    @abstractmethod
    async def find_page(self, title: str) -> Optional[PageMatch]:
        """Best-effort lookup of the page a suggestion would change."""


class InMemoryKnowledgeStore(KnowledgeStore):
    """Process-local store used for dry runs and tests."""

    def __init__(self):
        self.pages: Dict[str, PageMatch] = {}
        self.revisions: Dict[str, int] = {}

    async def write_page(
        self,
        page_ref: Optional[str],
        title: str,
        content: str,
        knowledge_type: Optional[str] = None,
    ) -> str:
        ref = page_ref or f"{knowledge_type or 'general'}/{slugify(title)}.md"
        existing = self.pages.get(ref)
        if existing is not None and content_hash(existing.content) == content_hash(content):
            logger.debug(f"Page {ref} unchanged, skipping write")
            return ref

        self.pages[ref] = PageMatch(page_ref=ref, title=title, content=content)
        self.revisions[ref] = self.revisions.get(ref, 0) + 1
        logger.info(f"[dry-run] Wrote page {ref} (revision {self.revisions[ref]})")
        return ref

    async def find_page(self, title: str) -> Optional[PageMatch]:
        wanted = title.strip().lower()
        for page in self.pages.values():
            if page.title.strip().lower() == wanted:
                return page
        return None
