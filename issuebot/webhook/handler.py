import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from issuebot.analyzer.agent import AnalysisFailure
from issuebot.github.auth import GitHubAppAuth
from issuebot.github.client import GitHubClientError
from issuebot.github.token_cache import TokenCache
from issuebot.logger import get_logger
from issuebot.models import CommentInfo, IssueContext, RepoConfig, issue_context_from_payload
from issuebot.repos import RepoRegistry
from issuebot.security.webhook_verify import VerificationFailure, ensure_signature
from issuebot.triage import IssueTriager
from issuebot.webhook.loop_prevention import LoopPrevention
from issuebot.webhook.mention_detector import MentionDetector


logger = get_logger("issuebot.webhook.handler")

ANALYZE_COMMAND = "/analyze"


class TriggerOutcome(str, Enum):
    REJECTED = "rejected"
    IGNORED = "ignored"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class DispatchResult:
    outcome: TriggerOutcome
    reason: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        data = {"status": self.outcome.value}
        if self.reason:
            data["reason"] = self.reason
        return data


def _ignored(reason: str) -> DispatchResult:
    return DispatchResult(TriggerOutcome.IGNORED, reason)


def derive_event_id(event_name: str, payload: Dict[str, Any]) -> str:
    """
    Stand-in delivery id built from the payload, for transports that do not
    send X-GitHub-Delivery.
    """
    repo = (payload.get("repository") or {}).get("full_name", "")
    issue = payload.get("issue") or {}
    comment = payload.get("comment") or {}

    event_id = f"{event_name}.{payload.get('action')}:{repo}#{issue.get('number')}"
    if comment.get("id") is not None:
        event_id += f":{comment['id']}"
    elif issue.get("id") is not None:
        event_id += f":{issue['id']}"
    return event_id


def _strip_quotes(text: str) -> str:
    return "\n".join(
        line for line in text.splitlines()
        if not line.lstrip().startswith(">")
    ).strip()


class WebhookHandler:
    """
    Webhook entry point.

    received → verified → gated(loop) → gated(mention) → context-built →
    analyzed → labeled? → responded? → recorded

    The loop check and mark_processed run before the first await, so two
    deliveries with the same id can never both get past the duplicate check.
    """

    def __init__(
        self,
        webhook_secret: Optional[str],
        registry: RepoRegistry,
        triager: IssueTriager,
        loop_prevention: LoopPrevention,
        mention_detector: MentionDetector,
        token_cache: Optional[TokenCache] = None,
        require_mention_on_open: bool = True,
    ):
        self.webhook_secret = webhook_secret
        self.registry = registry
        self.triager = triager
        self.github_client = triager.github_client
        self.loop_prevention = loop_prevention
        self.mention_detector = mention_detector
        self.token_cache = token_cache
        self.require_mention_on_open = require_mention_on_open

    # =========================================================
    # Transport entry
    # =========================================================

    async def handle(
        self,
        event_id: Optional[str],
        event_name: Optional[str],
        raw_body: bytes,
        signature: Optional[str],
    ) -> DispatchResult:
        try:
            ensure_signature(raw_body, signature, self.webhook_secret)
        except VerificationFailure:
            logger.warning("Rejected delivery %s: invalid signature", event_id or "-")
            return DispatchResult(TriggerOutcome.REJECTED, "invalid_signature")

        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            logger.warning("Delivery %s has a non-JSON body", event_id or "-")
            return _ignored("invalid_payload")

        if not isinstance(payload, dict):
            return _ignored("invalid_payload")

        return await self.dispatch(event_id, event_name or "", payload)

    async def dispatch(self, event_id: Optional[str], event_name: str, payload: Dict[str, Any]) -> DispatchResult:
        action = payload.get("action")
        event_id = event_id or derive_event_id(event_name, payload)

        try:
            # ---------------------------------------------------------
            # App uninstalled → drop its cached token
            # ---------------------------------------------------------
            if event_name == "installation" and action == "deleted":
                installation_id = GitHubAppAuth.get_installation_id_from_payload(payload)
                if self.token_cache is not None and installation_id is not None:
                    self.token_cache.clear(installation_id)
                    logger.info("Installation %s removed, token dropped", installation_id)
                return _ignored("installation_removed")

            if event_name == "issues" and action == "opened":
                return await self._on_issue_opened(event_id, payload)

            if event_name == "issue_comment" and action == "created":
                return await self._on_comment_created(event_id, payload)

            if event_name == "issues" and action == "edited":
                issue = payload.get("issue") or {}
                logger.info("[EDITED] #%s: %s", issue.get("number"), issue.get("title"))

            return _ignored("unhandled_event")

        except Exception:
            # Never crash webhook processing
            logger.exception("Unhandled error while processing %s.%s", event_name, action)
            return DispatchResult(TriggerOutcome.FAILED, "unhandled_error")

    # =========================================================
    # Repository policy
    # =========================================================

    def _enabled_config(self, payload: Dict[str, Any]) -> Optional[RepoConfig]:
        repo_full = (payload.get("repository") or {}).get("full_name")
        config = self.registry.get(repo_full) if repo_full else None

        if config is None or not config.enabled:
            logger.debug("Repo not enabled: %s", repo_full)
            return None
        return config

    def add_repo(self, config: RepoConfig) -> None:
        self.registry.add(config)

    def remove_repo(self, owner: str, name: str) -> bool:
        return self.registry.remove(owner, name)

    # =========================================================
    # issues.opened
    # =========================================================

    async def _on_issue_opened(self, event_id: str, payload: Dict[str, Any]) -> DispatchResult:
        config = self._enabled_config(payload)
        if config is None:
            return _ignored("repo_not_enabled")

        context = issue_context_from_payload(payload)
        if context.issue.number is None:
            return _ignored("invalid_payload")

        verdict = self.loop_prevention.check(context.issue.user, context.issue_key, event_id)
        if verdict.should_ignore:
            logger.info("[SKIP] %s: %s", context.issue_key, verdict.reason)
            return _ignored(verdict.reason)

        self.loop_prevention.mark_processed(event_id)

        if self.require_mention_on_open:
            text = f"{context.issue.title}\n{context.issue.body or ''}"
            if not self.mention_detector.detect(text).is_mentioned:
                logger.info("[SKIP] %s: no mention", context.issue_key)
                return _ignored("no_mention")
            context.request = self.mention_detector.extract_message_after_mention(context.issue.body)

        logger.info("[NEW ISSUE] %s: %s", context.issue_key, context.issue.title)
        return await self._process(context, config, event_id, respond_unconditionally=False)

    # =========================================================
    # issue_comment.created
    # =========================================================

    async def _on_comment_created(self, event_id: str, payload: Dict[str, Any]) -> DispatchResult:
        config = self._enabled_config(payload)
        if config is None:
            return _ignored("repo_not_enabled")

        comment = payload.get("comment") or {}
        author = (comment.get("user") or {}).get("login") or ""
        body = comment.get("body") or ""

        context = issue_context_from_payload(payload)
        if context.issue.number is None:
            return _ignored("invalid_payload")

        verdict = self.loop_prevention.check(author, context.issue_key, event_id)
        if verdict.should_ignore:
            logger.info("[SKIP] %s: %s", context.issue_key, verdict.reason)
            return _ignored(verdict.reason)

        self.loop_prevention.mark_processed(event_id)

        mentioned = self.mention_detector.detect(body).is_mentioned or ANALYZE_COMMAND in body

        # ----- first suspension point -----
        comments = None
        if not mentioned:
            if not body.lstrip().startswith(">") and "\n>" not in body:
                return _ignored("no_mention")

            comments = await self._fetch_comments(context)
            if not self._is_reply_to_own_comment(body, comments):
                logger.info("[SKIP] %s: no mention", context.issue_key)
                return _ignored("no_mention")

            context.request = _strip_quotes(body) or None
        else:
            context.request = self.mention_detector.extract_message_after_mention(body) or (
                body.replace(ANALYZE_COMMAND, "").strip() or None
            )

        logger.info("[MENTION] %s by %s", context.issue_key, author)

        if comments is None:
            comments = await self._fetch_comments(context)
        context.conversation = comments

        # An explicit request from a human always gets an answer
        return await self._process(context, config, event_id, respond_unconditionally=True)

    async def _fetch_comments(self, context: IssueContext) -> List[CommentInfo]:
        try:
            return await self.github_client.get_issue_comments(
                context.repository.owner,
                context.repository.name,
                context.issue.number,
            )
        except GitHubClientError:
            logger.exception("Failed to fetch comments for %s", context.issue_key)
            return []

    def _is_reply_to_own_comment(self, body: str, comments: List[CommentInfo]) -> bool:
        bot = self.mention_detector.bot_username
        own = [c for c in comments if c.user in (bot, f"{bot}[bot]")]
        if not own:
            return False
        return self.mention_detector.is_reply_to_bot(body, own[-1].body)

    # =========================================================
    # Analysis + side effects
    # =========================================================

    async def _process(
        self,
        context: IssueContext,
        config: RepoConfig,
        event_id: str,
        respond_unconditionally: bool,
    ) -> DispatchResult:
        try:
            analysis = await self.triager.analyze(context, config)
        except AnalysisFailure:
            logger.exception("[ERROR] Analysis failed for %s", context.issue_key)
            return DispatchResult(TriggerOutcome.FAILED, "analysis_failed")

        result = await self.triager.apply(context, config, analysis, respond_unconditionally)

        if result.responded:
            self.loop_prevention.record_response(context.issue_key, event_id)

        return DispatchResult(TriggerOutcome.COMPLETED)
