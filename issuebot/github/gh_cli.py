import json
import re
from typing import Any, Dict, List

from issuebot.github.client import GitHubClientError, label_names
from issuebot.github.shell import run_command
from issuebot.logger import get_logger
from issuebot.models import CommentInfo, IssueInfo, RecentPR, RelatedIssue


logger = get_logger("issuebot.github.gh_cli")

ISSUE_FIELDS = "number,title,body,author,labels,createdAt,url"
NEW_LABEL_COLOR = "0e8a16"

_COMMENT_ID = re.compile(r"#issuecomment-(\d+)")


def _issue_from_gh(data: Dict[str, Any]) -> IssueInfo:
    return IssueInfo(
        number=data.get("number"),
        title=data.get("title") or "",
        body=data.get("body"),
        user=(data.get("author") or {}).get("login") or "unknown",
        labels=label_names(data.get("labels")),
        created_at=data.get("createdAt") or "",
        html_url=data.get("url") or "",
    )


class GhCliClient:
    """
    Backend that shells out to an authenticated `gh` CLI.
    """

    def __init__(self, binary: str = "gh"):
        self.binary = binary

    async def _gh(self, *args: str) -> str:
        return await run_command(self.binary, *args)

    async def _gh_json(self, *args: str) -> Any:
        out = await self._gh(*args)
        try:
            return json.loads(out or "null")
        except json.JSONDecodeError as exc:
            raise GitHubClientError(f"Failed to parse gh output for: {' '.join(args[:2])}") from exc

    async def add_labels(self, owner: str, repo: str, issue_number: int, labels: List[str]) -> None:
        full = f"{owner}/{repo}"

        # gh refuses unknown labels, so create them first; existing ones fail harmlessly
        for label in labels:
            try:
                await self._gh("label", "create", label, "--repo", full, "--color", NEW_LABEL_COLOR)
            except GitHubClientError:
                logger.debug("Label create skipped: %s on %s", label, full)

        await self._gh(
            "issue", "edit", str(issue_number),
            "--repo", full,
            "--add-label", ",".join(labels),
        )

    async def create_comment(self, owner: str, repo: str, issue_number: int, body: str) -> Dict[str, Any]:
        out = await self._gh(
            "issue", "comment", str(issue_number),
            "--repo", f"{owner}/{repo}",
            "--body", body,
        )
        # gh prints the new comment's URL
        match = _COMMENT_ID.search(out)
        return {"id": int(match.group(1)) if match else None}

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> IssueInfo:
        data = await self._gh_json(
            "issue", "view", str(issue_number),
            "--repo", f"{owner}/{repo}",
            "--json", ISSUE_FIELDS,
        )
        return _issue_from_gh(data)

    async def get_issue_comments(self, owner: str, repo: str, issue_number: int) -> List[CommentInfo]:
        data = await self._gh_json(
            "issue", "view", str(issue_number),
            "--repo", f"{owner}/{repo}",
            "--json", "comments",
        )
        comments = []
        for c in (data or {}).get("comments", []):
            # gh exposes GraphQL node ids only; keep the numeric part of the URL
            match = _COMMENT_ID.search(c.get("url") or "")
            comments.append(
                CommentInfo(
                    id=int(match.group(1)) if match else 0,
                    user=(c.get("author") or {}).get("login") or "unknown",
                    body=c.get("body") or "",
                    created_at=c.get("createdAt") or "",
                )
            )
        return comments

    async def list_open_issues(self, owner: str, repo: str, limit: int = 10) -> List[IssueInfo]:
        data = await self._gh_json(
            "issue", "list",
            "--repo", f"{owner}/{repo}",
            "--state", "open",
            "--limit", str(limit),
            "--json", ISSUE_FIELDS,
        )
        return [_issue_from_gh(i) for i in data or []]

    async def find_similar_issues(self, owner: str, repo: str, query: str, limit: int = 5) -> List[RelatedIssue]:
        try:
            data = await self._gh_json(
                "search", "issues", query,
                "--repo", f"{owner}/{repo}",
                "--limit", str(limit),
                "--json", "number,title,state",
            )
        except GitHubClientError:
            logger.warning("Similar issue search failed for %s/%s", owner, repo)
            return []

        return [
            RelatedIssue(
                number=item.get("number"),
                title=item.get("title") or "",
                similarity=0,  # gh gives no score
                status=item.get("state") or "open",
            )
            for item in data or []
        ]

    async def get_recent_closed_issues(self, owner: str, repo: str, limit: int = 10) -> List[IssueInfo]:
        data = await self._gh_json(
            "issue", "list",
            "--repo", f"{owner}/{repo}",
            "--state", "closed",
            "--limit", str(limit),
            "--json", ISSUE_FIELDS,
        )
        return [_issue_from_gh(i) for i in data or []]

    async def get_recent_prs(self, owner: str, repo: str, limit: int = 10) -> List[RecentPR]:
        data = await self._gh_json(
            "pr", "list",
            "--repo", f"{owner}/{repo}",
            "--state", "all",
            "--limit", str(limit),
            "--json", "number,title,state,mergedAt",
        )
        return [
            RecentPR(
                number=pr.get("number"),
                title=pr.get("title") or "",
                state=pr.get("state") or "",
                merged=pr.get("mergedAt") is not None,
            )
            for pr in data or []
        ]

    async def clone_repo(self, owner: str, repo: str, local_path: str) -> None:
        await self._gh("repo", "clone", f"{owner}/{repo}", local_path, "--", "--depth", "1")
