import pytest

from issuebot.github.client import GitHubClientError
from issuebot.models import AnalysisResult, CommentInfo, IssueClassification, RepoConfig
from issuebot.repos import RepoRegistry


class FakeGitHubClient:
    """
    In-memory GitHubClient that records every side effect.
    """

    def __init__(self):
        self.labels = []
        self.posted = []
        self.cloned = []
        self.comments = {}
        self.open_issues = {}
        self.issues = {}
        self.fail_labels = False
        self.fail_comments = False
        self.fail_comment_fetch = False

    async def add_labels(self, owner, repo, issue_number, labels):
        if self.fail_labels:
            raise GitHubClientError("labels failed")
        self.labels.append((f"{owner}/{repo}", issue_number, list(labels)))

    async def create_comment(self, owner, repo, issue_number, body):
        if self.fail_comments:
            raise GitHubClientError("comment failed")
        self.posted.append((f"{owner}/{repo}", issue_number, body))
        return {"id": 1000 + len(self.posted)}

    async def get_issue(self, owner, repo, issue_number):
        try:
            return self.issues[(f"{owner}/{repo}", issue_number)]
        except KeyError:
            raise GitHubClientError("no such issue")

    async def get_issue_comments(self, owner, repo, issue_number):
        if self.fail_comment_fetch:
            raise GitHubClientError("comments failed")
        return list(self.comments.get(issue_number, []))

    async def list_open_issues(self, owner, repo, limit=10):
        return list(self.open_issues.get(f"{owner}/{repo}", []))[:limit]

    async def find_similar_issues(self, owner, repo, query, limit=5):
        return []

    async def get_recent_closed_issues(self, owner, repo, limit=10):
        return []

    async def get_recent_prs(self, owner, repo, limit=10):
        return []

    async def clone_repo(self, owner, repo, local_path):
        self.cloned.append((f"{owner}/{repo}", local_path))


class FakeAnalyzer:
    def __init__(self, labels=("bug",), response="ack", error=None):
        self.labels = list(labels)
        self.response = response
        self.error = error
        self.calls = []

    async def analyze_issue(self, context, repo_path=None):
        self.calls.append(context)
        if self.error is not None:
            raise self.error
        return AnalysisResult(
            classification=IssueClassification(type="bug", priority="high"),
            labels=list(self.labels),
            response=self.response,
            confidence=0.9,
        )


@pytest.fixture
def github():
    return FakeGitHubClient()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def registry():
    return RepoRegistry([RepoConfig(owner="octo", name="repo")])


def bot_comment(body, comment_id=1, user="issuebot[bot]"):
    return CommentInfo(id=comment_id, user=user, body=body)


@pytest.fixture
def make_comment():
    return bot_comment


def _repository():
    return {
        "name": "repo",
        "full_name": "octo/repo",
        "owner": {"login": "octo"},
        "default_branch": "main",
        "clone_url": "https://github.com/octo/repo.git",
    }


def _issue(number, title, body, author):
    return {
        "id": 5000 + number,
        "number": number,
        "title": title,
        "body": body,
        "user": {"login": author},
        "labels": [],
        "created_at": "2024-01-01T00:00:00Z",
        "html_url": f"https://github.com/octo/repo/issues/{number}",
    }


@pytest.fixture
def issue_payload():
    def build(number=1, title="Crash on start", body="@issuebot it crashes", author="alice", action="opened"):
        return {
            "action": action,
            "issue": _issue(number, title, body, author),
            "repository": _repository(),
            "installation": {"id": 42},
        }
    return build


@pytest.fixture
def comment_payload():
    def build(body, number=1, author="alice", comment_id=900):
        return {
            "action": "created",
            "issue": _issue(number, "Crash on start", "It crashes", "alice"),
            "comment": {
                "id": comment_id,
                "body": body,
                "user": {"login": author},
                "created_at": "2024-01-02T00:00:00Z",
            },
            "repository": _repository(),
            "installation": {"id": 42},
        }
    return build
