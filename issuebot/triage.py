import os
from dataclasses import dataclass
from typing import Optional, Set

from issuebot.analyzer.agent import IssueAnalyzer
from issuebot.analyzer.context_collector import ContextCollector
from issuebot.github.client import GitHubClient, GitHubClientError
from issuebot.logger import get_logger
from issuebot.models import AnalysisResult, IssueContext, RepoConfig


logger = get_logger("issuebot.triage")


@dataclass
class TriageResult:
    analysis: AnalysisResult
    labeled: bool = False
    responded: bool = False
    comment_id: Optional[int] = None


class IssueTriager:
    """
    Shared analysis pipeline for webhook and poller triggers:
    context → analysis → optional labels → optional comment.

    Analysis errors surface as AnalysisFailure before any side effect.
    Label and comment failures are logged and left as they are.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        analyzer: IssueAnalyzer,
        collector: Optional[ContextCollector] = None,
    ):
        self.github_client = github_client
        self.analyzer = analyzer
        self.collector = collector
        self._clone_attempted: Set[str] = set()

    async def ensure_local_clone(self, config: RepoConfig) -> Optional[str]:
        """
        Return the configured local clone, cloning it once if it is missing.
        """
        path = config.local_path
        if not path:
            return None

        if os.path.isdir(path):
            return path

        if config.full_name in self._clone_attempted:
            return None
        self._clone_attempted.add(config.full_name)

        try:
            await self.github_client.clone_repo(config.owner, config.name, path)
            logger.info("Cloned %s into %s", config.full_name, path)
            return path
        except GitHubClientError:
            logger.exception("Failed to clone %s into %s", config.full_name, path)
            return None

    async def analyze(self, context: IssueContext, config: Optional[RepoConfig] = None) -> AnalysisResult:
        if self.collector is not None and context.collected is None:
            context.collected = await self.collector.collect(context)

        repo_path = await self.ensure_local_clone(config) if config else None

        logger.info("Analyzing %s", context.issue_key)
        analysis = await self.analyzer.analyze_issue(context, repo_path)
        logger.info(
            "Result for %s: type=%s priority=%s labels=%s",
            context.issue_key,
            analysis.classification.type,
            analysis.classification.priority,
            ",".join(analysis.labels) or "-",
        )
        return analysis

    async def apply(
        self,
        context: IssueContext,
        config: RepoConfig,
        analysis: AnalysisResult,
        respond_unconditionally: bool = False,
    ) -> TriageResult:
        result = TriageResult(analysis=analysis)
        owner = context.repository.owner
        name = context.repository.name
        number = context.issue.number

        if config.auto_label and analysis.labels:
            try:
                await self.github_client.add_labels(owner, name, number, analysis.labels)
                result.labeled = True
                logger.info("Labeled %s: %s", context.issue_key, ", ".join(analysis.labels))
            except GitHubClientError:
                logger.exception("Failed to label %s", context.issue_key)

        if respond_unconditionally or config.auto_respond:
            try:
                created = await self.github_client.create_comment(owner, name, number, analysis.response)
                result.responded = True
                result.comment_id = (created or {}).get("id")
                logger.info("Responded on %s", context.issue_key)
            except GitHubClientError:
                logger.exception("Failed to comment on %s", context.issue_key)

        return result

    async def run(
        self,
        context: IssueContext,
        config: RepoConfig,
        respond_unconditionally: bool = False,
    ) -> TriageResult:
        analysis = await self.analyze(context, config)
        return await self.apply(context, config, analysis, respond_unconditionally)
