"""
GitHub Integration Module

Markdown knowledge base pages stored in a GitHub repository.
"""

from app.integrations.github.store import GitHubKnowledgeStore, render_page, split_frontmatter

__all__ = ["GitHubKnowledgeStore", "render_page", "split_frontmatter"]
