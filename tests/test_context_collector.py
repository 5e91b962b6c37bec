import pytest

from issuebot.analyzer.context_collector import (
    ContextCollector,
    build_conversation_text,
    describe_local_repo,
    extract_keywords,
)
from issuebot.github.client import GitHubClientError
from issuebot.models import CommentInfo, IssueContext, IssueInfo, RecentPR, RelatedIssue, RepositoryInfo


def test_extract_keywords():
    keywords = extract_keywords("The parser crashes when reading YAML", "parser error with yaml files")
    assert keywords == "parser crashes reading yaml error"


def test_extract_keywords_empty():
    assert extract_keywords("a b c", None) == ""


def test_build_conversation_text_keeps_newest():
    comments = [CommentInfo(id=i, user="u", body="x" * 50) for i in range(10)]
    text = build_conversation_text(comments, max_chars=100)

    assert len(text) == 100
    assert text.startswith("…")


def test_describe_local_repo(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("")
    (tmp_path / "README.md").write_text("")

    listing = describe_local_repo(str(tmp_path)).splitlines()

    assert "README.md" in listing
    assert "src/main.py" in listing
    assert not any(".git" in line for line in listing)


class SearchClient:
    def __init__(self, fail=False):
        self.fail = fail

    async def find_similar_issues(self, owner, repo, query, limit=5):
        return [
            RelatedIssue(number=1, title="this one", similarity=0, status="open"),
            RelatedIssue(number=2, title="older crash", similarity=0, status="closed"),
        ]

    async def get_recent_prs(self, owner, repo, limit=10):
        if self.fail:
            raise GitHubClientError("boom")
        return [RecentPR(number=3, title="fix crash", state="closed", merged=True)]

    async def get_recent_closed_issues(self, owner, repo, limit=10):
        if self.fail:
            raise GitHubClientError("boom")
        return [
            IssueInfo(number=1, title="this one", body=None, user="alice"),
            IssueInfo(number=6, title="Parser hang", body=None, user="bob"),
        ]


def _context():
    return IssueContext(
        issue=IssueInfo(number=1, title="Parser crashes on start", body=None, user="alice"),
        repository=RepositoryInfo.from_names("octo", "repo"),
    )


@pytest.mark.asyncio
async def test_collect_excludes_current_issue():
    collected = await ContextCollector(SearchClient()).collect(_context())

    assert [i.number for i in collected.related_issues] == [2]
    assert [p.number for p in collected.recent_prs] == [3]
    assert [i.number for i in collected.recent_closed] == [6]


@pytest.mark.asyncio
async def test_collect_degrades_on_failure():
    collected = await ContextCollector(SearchClient(fail=True)).collect(_context())
    assert collected.recent_prs == []
    assert collected.recent_closed == []
    assert [i.number for i in collected.related_issues] == [2]
