import base64
import os

import httpx
import jwt
from typing import Any, Dict, List, Optional

from issuebot.github.auth import GitHubAppAuth
from issuebot.github.client import GitHubClientError, RepoUnavailable, label_names
from issuebot.github.shell import run_command
from issuebot.logger import get_logger
from issuebot.models import CommentInfo, IssueInfo, RecentPR, RelatedIssue


GITHUB_API = "https://api.github.com"

logger = get_logger("issuebot.github.api")


def git_auth_env(token: str) -> Dict[str, str]:
    """
    Environment that hands git an Authorization header for one command.

    The credential never appears on the command line or in the clone's
    remote URL, so nothing is left behind in .git/config.
    """
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()

    env = dict(os.environ)
    env.update({
        "GIT_TERMINAL_PROMPT": "0",
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.https://github.com/.extraheader",
        "GIT_CONFIG_VALUE_0": f"AUTHORIZATION: basic {basic}",
    })
    return env


def _issue_from_json(data: Dict[str, Any]) -> IssueInfo:
    return IssueInfo(
        number=data.get("number"),
        title=data.get("title") or "",
        body=data.get("body"),
        user=(data.get("user") or {}).get("login") or "unknown",
        labels=label_names(data.get("labels")),
        created_at=data.get("created_at") or "",
        html_url=data.get("html_url") or "",
    )


class GitHubApiClient:
    """
    REST backend. Authenticates with a static token when one is given,
    otherwise with GitHub App installation tokens.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        auth: Optional[GitHubAppAuth] = None,
        installation_id: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not token and auth is None:
            raise ValueError("GitHubApiClient needs a token or GitHub App auth")

        self._token = token
        self._auth = auth
        self._installation_id = installation_id
        self._transport = transport

    async def _get_token(self) -> str:
        if self._token:
            return self._token

        try:
            return await self._auth.get_installation_token(self._installation_id)
        except (httpx.HTTPError, jwt.PyJWTError, RuntimeError, ValueError) as exc:
            logger.exception("Failed to obtain an installation token")
            raise GitHubClientError(f"GitHub App authentication failed: {exc}") from exc

    async def _headers(self) -> Dict[str, str]:
        token = await self._get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        headers = await self._headers()
        url = f"{GITHUB_API}{endpoint}"

        try:
            async with httpx.AsyncClient(follow_redirects=True, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    params=params,
                )
        except httpx.HTTPError as exc:
            logger.warning("GitHub request failed for %s: %s", endpoint, exc)
            raise GitHubClientError(f"Request to {endpoint} failed: {exc}") from exc

        status = response.status_code

        if status in (404, 410):
            logger.warning("Repo unavailable (%s): %s", status, endpoint)
            raise RepoUnavailable(f"Repository or resource not found: {endpoint}")

        if status == 401:
            # Token revoked or expired early; force a fresh one next time
            if self._auth is not None:
                self._auth.invalidate(self._installation_id)
            logger.warning("Unauthorized (%s): %s", status, endpoint)
            raise RepoUnavailable(f"Unauthorized: {endpoint}")

        if status == 403:
            logger.warning("Access denied (%s): %s", status, endpoint)
            raise RepoUnavailable(f"Access denied or app uninstalled: {endpoint}")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.exception("GitHub API error %s for %s", status, endpoint)
            raise GitHubClientError(f"GitHub API error {status} for {endpoint}") from exc

        if status == 204:
            return None

        try:
            return response.json()
        except ValueError as exc:
            logger.exception("Failed to decode JSON response from %s", endpoint)
            raise GitHubClientError(f"Invalid JSON from {endpoint}") from exc

    # =========================================================
    # GitHubClient operations
    # =========================================================

    async def add_labels(self, owner: str, repo: str, issue_number: int, labels: List[str]) -> None:
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/labels",
            {"labels": labels},
        )

    async def create_comment(self, owner: str, repo: str, issue_number: int, body: str) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            {"body": body},
        )
        return {"id": (data or {}).get("id")}

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> IssueInfo:
        data = await self._request("GET", f"/repos/{owner}/{repo}/issues/{issue_number}")
        return _issue_from_json(data)

    async def get_issue_comments(self, owner: str, repo: str, issue_number: int) -> List[CommentInfo]:
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            params={"per_page": 100},
        )
        return [
            CommentInfo(
                id=c.get("id"),
                user=(c.get("user") or {}).get("login") or "unknown",
                body=c.get("body") or "",
                created_at=c.get("created_at") or "",
            )
            for c in data or []
        ]

    async def list_open_issues(self, owner: str, repo: str, limit: int = 10) -> List[IssueInfo]:
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues",
            params={"state": "open", "per_page": limit},
        )
        # The issues endpoint also returns pull requests
        return [_issue_from_json(i) for i in data or [] if "pull_request" not in i]

    async def find_similar_issues(self, owner: str, repo: str, query: str, limit: int = 5) -> List[RelatedIssue]:
        try:
            data = await self._request(
                "GET",
                "/search/issues",
                params={"q": f"{query} repo:{owner}/{repo} is:issue", "per_page": limit},
            )
        except GitHubClientError:
            logger.warning("Similar issue search failed for %s/%s", owner, repo)
            return []

        return [
            RelatedIssue(
                number=item.get("number"),
                title=item.get("title") or "",
                similarity=0,
                status=item.get("state") or "open",
            )
            for item in (data or {}).get("items", [])[:limit]
        ]

    async def get_recent_closed_issues(self, owner: str, repo: str, limit: int = 10) -> List[IssueInfo]:
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues",
            params={"state": "closed", "per_page": limit},
        )
        return [_issue_from_json(i) for i in data or [] if "pull_request" not in i]

    async def get_recent_prs(self, owner: str, repo: str, limit: int = 10) -> List[RecentPR]:
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            params={"state": "all", "per_page": limit},
        )
        return [
            RecentPR(
                number=pr.get("number"),
                title=pr.get("title") or "",
                state=pr.get("state") or "",
                merged=pr.get("merged_at") is not None,
            )
            for pr in data or []
        ]

    async def clone_repo(self, owner: str, repo: str, local_path: str) -> None:
        token = await self._get_token()
        await run_command(
            "git", "clone", "--depth", "1",
            f"https://github.com/{owner}/{repo}.git",
            local_path,
            env=git_auth_env(token),
        )
