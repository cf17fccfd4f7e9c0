"""
GitHub Knowledge Store

Pages are markdown files with YAML frontmatter in a GitHub repository,
laid out as {knowledge_type}/{slug}.md on the default branch.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import yaml
from github import Github
from github.GithubException import GithubException, UnknownObjectException
from github.Repository import Repository

from app.config import Settings, get_settings
from app.errors import SyncError
from app.models.knowledge import PageMatch
from app.services.knowledge_store import KnowledgeStore
from app.utils.helpers import content_hash, slugify, utcnow

logger = logging.getLogger(__name__)


def split_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """
    Split a markdown document into (frontmatter, body).

    Documents without frontmatter, or with unparseable YAML, return an empty dict
    and the original text.
    """
    if not content.startswith("---"):
        return {}, content

    parts = content.split("---", 2)
    if len(parts) < 3:
        return {}, content

    try:
        frontmatter = yaml.safe_load(parts[1].strip()) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse YAML frontmatter: {e}")
        return {}, content
    if not isinstance(frontmatter, dict):
        return {}, content
    return frontmatter, parts[2].strip()


def render_page(title: str, body: str, metadata: Dict[str, Any]) -> str:
    frontmatter = yaml.safe_dump(
        {"title": title, **metadata}, sort_keys=False, allow_unicode=True
    ).strip()
    return f"---\n{frontmatter}\n---\n\n{body.strip()}\n"


class GitHubKnowledgeStore(KnowledgeStore):
    """KnowledgeStore writing directly to a branch of a GitHub repository."""

    def __init__(self, settings: Optional[Settings] = None, repo: Optional[Repository] = None):
        settings = settings or get_settings()
        if repo is None:
            client = Github(settings.github_token)
            repo = client.get_repo(
                f"{settings.github_repo_owner}/{settings.github_repo_name}"
            )
        self.repo = repo
        self.branch = settings.github_default_branch
        logger.info(f"GitHub knowledge store initialized for {self.repo.full_name}")

    async def write_page(
        self,
        page_ref: Optional[str],
        title: str,
        content: str,
        knowledge_type: Optional[str] = None,
    ) -> str:
        path = page_ref or f"{knowledge_type or 'general'}/{slugify(title)}.md"
        try:
            # PyGithub is blocking; keep the worker loop responsive
            return await asyncio.to_thread(self._write, path, title, content, knowledge_type)
        except GithubException as e:
            logger.error(f"Failed to write {path}: {e}")
            raise SyncError(f"GitHub write to {path} failed ({e.status}): {e.data}") from e

    def _write(
        self, path: str, title: str, content: str, knowledge_type: Optional[str]
    ) -> str:
        try:
            existing = self.repo.get_contents(path, ref=self.branch)
        except UnknownObjectException:
            existing = None

        if existing is not None:
            old_meta, old_body = split_frontmatter(existing.decoded_content.decode("utf-8"))
            if content_hash(old_body) == content_hash(content):
                logger.info(f"Page {path} already has this content, skipping commit")
                return path
            metadata = {k: v for k, v in old_meta.items() if k != "title"}
            metadata["last_updated"] = utcnow().date().isoformat()
            self.repo.update_file(
                path=path,
                message=f"Update knowledge: {title}",
                content=render_page(title, content, metadata),
                sha=existing.sha,
                branch=self.branch,
            )
            logger.info(f"Updated page {path}")
        else:
            today = utcnow().date().isoformat()
            metadata = {
                "category": knowledge_type or "general",
                "created_date": today,
                "last_updated": today,
            }
            self.repo.create_file(
                path=path,
                message=f"Add knowledge: {title}",
                content=render_page(title, content, metadata),
                branch=self.branch,
            )
            logger.info(f"Created page {path}")
        return path

    async def find_page(self, title: str) -> Optional[PageMatch]:
        try:
            return await asyncio.to_thread(self._find, title)
        except GithubException as e:
            logger.warning(f"Page lookup for '{title}' failed: {e}")
            return None

    def _find(self, title: str) -> Optional[PageMatch]:
        wanted_title = title.strip().lower()
        wanted_name = f"{slugify(title)}.md"
        for file in self._markdown_files(""):
            frontmatter, body = split_frontmatter(file.decoded_content.decode("utf-8"))
            page_title = str(frontmatter.get("title") or file.name[: -len(".md")])
            if file.name == wanted_name or page_title.strip().lower() == wanted_title:
                return PageMatch(page_ref=file.path, title=page_title, content=body)
        return None

    def _markdown_files(self, path: str) -> List[Any]:
        try:
            contents = self.repo.get_contents(path, ref=self.branch)
        except UnknownObjectException:
            return []
        if not isinstance(contents, list):
            contents = [contents]

        files = []
        for item in contents:
            if item.type == "dir":
                files.extend(self._markdown_files(item.path))
            elif item.type == "file" and item.name.endswith(".md"):
                files.append(item)
        return files
