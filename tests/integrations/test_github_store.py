"""
Tests for the GitHub knowledge store with a mocked PyGithub repository.
"""

from unittest.mock import MagicMock

import pytest
from github.GithubException import GithubException, UnknownObjectException

from app.config import Settings
from app.errors import SyncError
from app.integrations.github.store import GitHubKnowledgeStore, render_page, split_frontmatter


def _file(path, text, sha="sha-1"):
    item = MagicMock()
    item.type = "file"
    item.path = path
    item.name = path.rsplit("/", 1)[-1]
    item.sha = sha
    item.decoded_content = text.encode("utf-8")
    return item


def _dir(path):
    item = MagicMock()
    item.type = "dir"
    item.path = path
    return item


@pytest.fixture
def repo():
    repo = MagicMock()
    repo.full_name = "acme/knowledge"
    repo.get_contents.side_effect = UnknownObjectException(404, {"message": "Not Found"}, None)
    return repo


@pytest.fixture
def store(repo):
    return GitHubKnowledgeStore(Settings(_env_file=None, github_default_branch="main"), repo=repo)


class TestFrontmatter:
    def test_split(self):
        meta, body = split_frontmatter("---\ntitle: Deploys\ncategory: policy\n---\n\nFridays only.\n")

        assert meta == {"title": "Deploys", "category": "policy"}
        assert body == "Fridays only."

    def test_no_frontmatter(self):
        assert split_frontmatter("# Just markdown") == ({}, "# Just markdown")

    def test_invalid_yaml_is_ignored(self):
        text = "---\ntitle: [unclosed\n---\nbody"
        assert split_frontmatter(text) == ({}, text)

    def test_render_then_split(self):
        page = render_page("Deploys", "Fridays only.", {"category": "policy"})

        assert page.startswith("---\ntitle: Deploys\n")
        assert split_frontmatter(page) == ({"title": "Deploys", "category": "policy"}, "Fridays only.")


class TestWritePage:
    @pytest.mark.asyncio
    async def test_creates_new_page(self, store, repo):
        ref = await store.write_page(None, "Deploy freeze", "Fridays only.", knowledge_type="policy")

        assert ref == "policy/deploy-freeze.md"
        kwargs = repo.create_file.call_args.kwargs
        assert kwargs["path"] == "policy/deploy-freeze.md"
        assert kwargs["branch"] == "main"
        assert "category: policy" in kwargs["content"]
        repo.update_file.assert_not_called()

    @pytest.mark.asyncio
    async def test_updates_existing_page_keeping_metadata(self, store, repo):
        existing = _file(
            "policy/deploy-freeze.md",
            render_page("Deploy freeze", "Thursdays only.", {"category": "policy", "owner": "sre"}),
        )
        repo.get_contents.side_effect = None
        repo.get_contents.return_value = existing

        await store.write_page("policy/deploy-freeze.md", "Deploy freeze", "Fridays only.")

        kwargs = repo.update_file.call_args.kwargs
        assert kwargs["sha"] == "sha-1"
        assert "owner: sre" in kwargs["content"]
        assert kwargs["content"].rstrip().endswith("Fridays only.")

    @pytest.mark.asyncio
    async def test_identical_content_is_not_committed(self, store, repo):
        repo.get_contents.side_effect = None
        repo.get_contents.return_value = _file(
            "fact/x.md", render_page("X", "Same body.", {"category": "fact"})
        )

        ref = await store.write_page("fact/x.md", "X", "Same body.")

        assert ref == "fact/x.md"
        repo.update_file.assert_not_called()
        repo.create_file.assert_not_called()

    @pytest.mark.asyncio
    async def test_github_errors_become_sync_errors(self, store, repo):
        repo.create_file.side_effect = GithubException(502, {"message": "Bad Gateway"}, None)

        with pytest.raises(SyncError):
            await store.write_page(None, "X", "Body", knowledge_type="fact")


class TestFindPage:
    @pytest.mark.asyncio
    async def test_matches_frontmatter_title_in_subdirectory(self, store, repo):
        page = _file("sop/oncall.md", render_page("On-call handoff", "Steps...", {}))
        tree = {"": [_dir("sop")], "sop": [page]}
        repo.get_contents.side_effect = lambda path, ref=None: tree[path]

        match = await store.find_page("on-call handoff")

        assert match.page_ref == "sop/oncall.md"
        assert match.content == "Steps..."

    @pytest.mark.asyncio
    async def test_no_match(self, store, repo):
        repo.get_contents.side_effect = lambda path, ref=None: []

        assert await store.find_page("Anything") is None
