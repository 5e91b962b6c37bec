import asyncio
import os
import re
from typing import List, Optional

from issuebot.github.client import GitHubClient, GitHubClientError
from issuebot.logger import get_logger
from issuebot.models import (
    CollectedContext,
    CommentInfo,
    IssueContext,
    IssueInfo,
    RecentPR,
    RelatedIssue,
)


logger = get_logger("issuebot.analyzer.context")

STOP_WORDS = {
    "the", "this", "that", "with", "from", "have", "been",
    "will", "would", "could", "should", "when", "where",
    "what", "which", "there", "their", "they", "them",
    "some", "other", "about", "into", "more", "also",
}

_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}


def extract_keywords(title: str, body: Optional[str], limit: int = 5) -> str:
    """
    Cheap keyword pick for issue search: unique words longer than three
    characters, stop words removed, in order of appearance.
    """
    text = f"{title} {body or ''}".lower()
    words = re.sub(r"[^\w\s]", " ", text).split()

    keywords: List[str] = []
    for w in words:
        if len(w) <= 3 or w in STOP_WORDS or w in keywords:
            continue
        keywords.append(w)
        if len(keywords) == limit:
            break

    return " ".join(keywords)


def build_conversation_text(comments: List[CommentInfo], max_chars: int = 12000) -> str:
    """
    Flatten an issue thread into "user: text" blocks, keeping the newest
    comments when the thread is too long.
    """
    blocks = [
        f"@{c.user} ({c.created_at}):\n{c.body.strip()}" if c.created_at else f"@{c.user}:\n{c.body.strip()}"
        for c in comments
        if c.body and c.body.strip()
    ]

    text = "\n\n".join(blocks)
    if len(text) > max_chars:
        return "…" + text[-(max_chars - 1):]
    return text


def describe_local_repo(path: str, max_entries: int = 200) -> str:
    """
    Shallow file listing of a local clone for the analysis prompt.
    """
    entries: List[str] = []

    for root, dirs, files in os.walk(path):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        rel = os.path.relpath(root, path)
        for name in sorted(files):
            entries.append(name if rel == "." else os.path.join(rel, name))
            if len(entries) >= max_entries:
                entries.append("…")
                return "\n".join(entries)

    return "\n".join(entries)


class ContextCollector:
    """
    Gathers related repository context for an issue. Every lookup degrades
    to an empty list on failure.
    """

    def __init__(self, github_client: GitHubClient):
        self.github_client = github_client

    async def collect(self, context: IssueContext) -> CollectedContext:
        owner = context.repository.owner
        name = context.repository.name
        keywords = extract_keywords(context.issue.title, context.issue.body)

        related_issues, recent_prs, recent_closed = await asyncio.gather(
            self._find_related_issues(owner, name, keywords, context.issue.number),
            self._get_recent_prs(owner, name),
            self._get_recent_closed(owner, name, context.issue.number),
        )

        return CollectedContext(
            related_issues=related_issues,
            recent_prs=recent_prs,
            recent_closed=recent_closed,
        )

    async def _find_related_issues(
        self, owner: str, repo: str, keywords: str, exclude_number: int
    ) -> List[RelatedIssue]:
        if not keywords:
            return []

        try:
            issues = await self.github_client.find_similar_issues(owner, repo, keywords, 5)
        except GitHubClientError:
            logger.warning("Related issue lookup failed for %s/%s", owner, repo)
            return []

        return [i for i in issues if i.number != exclude_number]

    async def _get_recent_prs(self, owner: str, repo: str) -> List[RecentPR]:
        try:
            return await self.github_client.get_recent_prs(owner, repo, 5)
        except GitHubClientError:
            logger.warning("Recent PR lookup failed for %s/%s", owner, repo)
            return []

    async def _get_recent_closed(self, owner: str, repo: str, exclude_number: int) -> List[IssueInfo]:
        try:
            issues = await self.github_client.get_recent_closed_issues(owner, repo, 5)
        except GitHubClientError:
            logger.warning("Closed issue lookup failed for %s/%s", owner, repo)
            return []

        return [i for i in issues if i.number != exclude_number]
