import asyncio
from typing import Optional, Set

from issuebot.analyzer.agent import AI_RESPONSE_MARKER, AnalysisFailure
from issuebot.github.client import GitHubClient, GitHubClientError
from issuebot.logger import get_logger
from issuebot.models import IssueContext, IssueInfo, RepoConfig, RepositoryInfo
from issuebot.repos import RepoRegistry
from issuebot.triage import IssueTriager


logger = get_logger("issuebot.poller")


def issue_key(owner: str, repo: str, number: int) -> str:
    return f"{owner}/{repo}#{number}"


class IssuePoller:
    """
    Periodically lists open issues of every enabled repository and triages
    the ones nobody has answered yet.

    `processing` is inserted synchronously before the analysis task is
    scheduled, so overlapping ticks never start the same issue twice.
    """

    def __init__(
        self,
        registry: RepoRegistry,
        github_client: GitHubClient,
        triager: IssueTriager,
        interval_seconds: float = 30,
        issue_limit: int = 10,
    ):
        self.registry = registry
        self.github_client = github_client
        self.triager = triager
        self.interval_seconds = interval_seconds
        self.issue_limit = issue_limit

        self.processed: Set[str] = set()
        self.processing: Set[str] = set()

        self._loop_task: Optional[asyncio.Task] = None
        # Strong refs so running ticks/analyses are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # =========================================================
    # Lifecycle
    # =========================================================

    def start(self) -> bool:
        if self.running:
            logger.info("Poller already running")
            return False

        self._loop_task = asyncio.create_task(self._poll_loop())
        logger.info("Poller started (interval=%ss)", self.interval_seconds)
        return True

    def stop(self) -> bool:
        """
        Stop scheduling ticks. Analyses already in flight run to completion.
        """
        if not self.running:
            return False

        self._loop_task.cancel()
        self._loop_task = None
        logger.info("Poller stopped")
        return True

    def add_repo(self, config: RepoConfig) -> None:
        self.registry.add(config)

    def remove_repo(self, owner: str, name: str) -> bool:
        return self.registry.remove(owner, name)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _poll_loop(self):
        while True:
            try:
                # A slow tick keeps going while the next one starts
                self._spawn(self.check_all_repos())
            except Exception:
                logger.exception("Poller tick failed to start")

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                logger.info("Poller loop cancelled")
                raise

    # =========================================================
    # Tick
    # =========================================================

    async def check_all_repos(self) -> None:
        for config in self.registry.enabled():
            try:
                await self.check_repo(config)
            except Exception:
                logger.exception("Poller failed for %s", config.full_name)

    async def check_repo(self, config: RepoConfig) -> None:
        try:
            issues = await self.github_client.list_open_issues(
                config.owner, config.name, self.issue_limit
            )
        except GitHubClientError:
            logger.exception("Failed to list issues for %s", config.full_name)
            return

        for issue in issues:
            key = issue_key(config.owner, config.name, issue.number)
            if key in self.processed or key in self.processing:
                continue

            if await self.has_ai_comment(config, issue.number):
                logger.info("[SKIP] %s already answered", key)
                self.processed.add(key)
                continue

            # Re-check after the await above; another tick may have claimed it
            if key in self.processed or key in self.processing:
                continue

            self.processing.add(key)
            self._spawn(self._process(config, issue, key))

    async def has_ai_comment(self, config: RepoConfig, issue_number: int) -> bool:
        try:
            comments = await self.github_client.get_issue_comments(
                config.owner, config.name, issue_number
            )
        except GitHubClientError:
            logger.warning(
                "Could not read comments for %s", issue_key(config.owner, config.name, issue_number)
            )
            return False

        return any(AI_RESPONSE_MARKER in (c.body or "") for c in comments)

    async def _process(self, config: RepoConfig, issue: IssueInfo, key: str) -> None:
        context = IssueContext(
            issue=issue,
            repository=RepositoryInfo.from_names(config.owner, config.name),
        )

        try:
            logger.info("[POLL] Processing %s: %s", key, issue.title)
            await self.triager.run(context, config)
        except AnalysisFailure:
            logger.exception("[ERROR] Analysis failed for %s", key)
        except Exception:
            logger.exception("[ERROR] Unexpected failure for %s", key)
        finally:
            # No retries: a settled issue is never picked up again
            self.processed.add(key)
            self.processing.discard(key)

    def stats(self):
        return {
            "running": self.running,
            "processed": len(self.processed),
            "processing": len(self.processing),
            "repos": len(self.registry.enabled()),
        }
