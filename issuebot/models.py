from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =========================================================
# Repository policy (persisted in the registry file)
# =========================================================

class RepoConfig(BaseModel):
    """
    Per-repository policy. Field aliases match the registry file layout.
    """
    model_config = ConfigDict(populate_by_name=True)

    owner: str
    name: str
    enabled: bool = True
    auto_label: bool = Field(default=True, alias="autoLabel")
    auto_respond: bool = Field(default=True, alias="autoRespond")
    local_path: Optional[str] = Field(default=None, alias="localPath")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


# =========================================================
# Issue context
# =========================================================

@dataclass
class IssueInfo:
    number: int
    title: str
    body: Optional[str]
    user: str
    labels: List[str] = field(default_factory=list)
    created_at: str = ""
    html_url: str = ""


@dataclass
class RepositoryInfo:
    owner: str
    name: str
    full_name: str
    default_branch: str = "main"
    clone_url: str = ""

    @classmethod
    def from_names(cls, owner: str, name: str) -> "RepositoryInfo":
        return cls(
            owner=owner,
            name=name,
            full_name=f"{owner}/{name}",
            default_branch="main",
            clone_url=f"https://github.com/{owner}/{name}.git",
        )


@dataclass
class CommentInfo:
    id: int
    user: str
    body: str
    created_at: str = ""


@dataclass
class RelatedIssue:
    number: int
    title: str
    similarity: float
    status: str


@dataclass
class RecentPR:
    number: int
    title: str
    state: str
    merged: bool


@dataclass
class CollectedContext:
    related_issues: List[RelatedIssue] = field(default_factory=list)
    recent_prs: List[RecentPR] = field(default_factory=list)
    recent_closed: List[IssueInfo] = field(default_factory=list)


@dataclass
class IssueContext:
    issue: IssueInfo
    repository: RepositoryInfo
    # Prior comments, present when the trigger was a comment
    conversation: List[CommentInfo] = field(default_factory=list)
    # Text following the mention in the triggering comment
    request: Optional[str] = None
    collected: Optional[CollectedContext] = None

    @property
    def issue_key(self) -> str:
        return f"{self.repository.full_name}#{self.issue.number}"


def issue_context_from_payload(payload: Dict[str, Any]) -> IssueContext:
    """
    Build an IssueContext from an `issues` or `issue_comment` webhook payload.
    """
    issue = payload.get("issue") or {}
    repository = payload.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login", "")
    name = repository.get("name", "")

    return IssueContext(
        issue=IssueInfo(
            number=issue.get("number"),
            title=issue.get("title") or "",
            body=issue.get("body"),
            user=(issue.get("user") or {}).get("login") or "unknown",
            labels=[l.get("name", "") for l in issue.get("labels") or []],
            created_at=issue.get("created_at") or "",
            html_url=issue.get("html_url") or "",
        ),
        repository=RepositoryInfo(
            owner=owner,
            name=name,
            full_name=repository.get("full_name") or f"{owner}/{name}",
            default_branch=repository.get("default_branch") or "main",
            clone_url=repository.get("clone_url") or "",
        ),
    )


# =========================================================
# Analysis output
# =========================================================

ISSUE_TYPES = ("bug", "feature", "question", "documentation", "enhancement", "other")
PRIORITIES = ("critical", "high", "medium", "low")


@dataclass
class IssueClassification:
    type: str = "other"
    priority: str = "medium"
    area: Optional[str] = None


@dataclass
class AnalysisResult:
    classification: IssueClassification
    labels: List[str]
    response: str
    confidence: float
