from typing import Any, Dict, List, Optional, Protocol

from issuebot.models import CommentInfo, IssueInfo, RecentPR, RelatedIssue


class GitHubClientError(Exception):
    """
    Raised by every repository client when a call fails.
    """
    pass


class RepoUnavailable(GitHubClientError):
    """
    Raised when a repository is deleted, renamed, or the app lost access.
    """
    pass


class GitHubClient(Protocol):
    """
    Repository API used by the webhook handler and the poller.

    Two interchangeable backends implement it: GhCliClient (gh CLI) and
    GitHubApiClient (REST). Both raise GitHubClientError on failure, except
    find_similar_issues which degrades to an empty list.
    """

    async def add_labels(self, owner: str, repo: str, issue_number: int, labels: List[str]) -> None:
        ...

    async def create_comment(self, owner: str, repo: str, issue_number: int, body: str) -> Dict[str, Any]:
        ...

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> IssueInfo:
        ...

    async def get_issue_comments(self, owner: str, repo: str, issue_number: int) -> List[CommentInfo]:
        ...

    async def list_open_issues(self, owner: str, repo: str, limit: int = 10) -> List[IssueInfo]:
        ...

    async def find_similar_issues(self, owner: str, repo: str, query: str, limit: int = 5) -> List[RelatedIssue]:
        ...

    async def get_recent_closed_issues(self, owner: str, repo: str, limit: int = 10) -> List[IssueInfo]:
        ...

    async def get_recent_prs(self, owner: str, repo: str, limit: int = 10) -> List[RecentPR]:
        ...

    async def clone_repo(self, owner: str, repo: str, local_path: str) -> None:
        ...


def label_names(labels: Optional[List[Dict[str, Any]]]) -> List[str]:
    return [l.get("name", "") for l in labels or [] if l.get("name")]
