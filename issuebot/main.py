from issuebot import settings  # load .env
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Header, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from issuebot.analyzer.agent import AnalysisFailure, IssueAnalyzer
from issuebot.analyzer.context_collector import ContextCollector
from issuebot.github.client import GitHubClient, GitHubClientError, RepoUnavailable
from issuebot.github.factory import create_app_auth, create_github_client
from issuebot.github.token_cache import TokenCache
from issuebot.logger import get_logger
from issuebot.models import IssueContext, RepoConfig, RepositoryInfo
from issuebot.poller.issue_poller import IssuePoller
from issuebot.repos import RepoRegistry
from issuebot.triage import IssueTriager
from issuebot.webhook.handler import TriggerOutcome, WebhookHandler
from issuebot.webhook.loop_prevention import LoopPrevention
from issuebot.webhook.mention_detector import MentionDetector


logger = get_logger()


@dataclass
class Services:
    token_cache: TokenCache
    registry: RepoRegistry
    github_client: GitHubClient
    triager: IssueTriager
    loop_prevention: LoopPrevention
    handler: WebhookHandler
    poller: IssuePoller


def build_services() -> Services:
    """
    Wire the default process-wide instances from settings.
    """
    token_cache = TokenCache(settings.TOKEN_REFRESH_MARGIN_SECONDS)
    registry = RepoRegistry.load(settings.REPOS_CONFIG_PATH)

    auth = create_app_auth(token_cache)
    github_client = create_github_client(auth)

    analyzer = IssueAnalyzer(timeout_seconds=settings.ANALYSIS_TIMEOUT_SECONDS)
    collector = ContextCollector(github_client) if settings.COLLECT_RELATED_CONTEXT else None
    triager = IssueTriager(github_client, analyzer, collector)

    loop_prevention = LoopPrevention(
        settings.BOT_USERNAME,
        cooldown_ms=settings.LOOP_COOLDOWN_MS,
        max_tracked=settings.LOOP_MAX_TRACKED,
    )

    handler = WebhookHandler(
        webhook_secret=settings.GITHUB_WEBHOOK_SECRET,
        registry=registry,
        triager=triager,
        loop_prevention=loop_prevention,
        mention_detector=MentionDetector(settings.BOT_USERNAME),
        token_cache=token_cache,
        require_mention_on_open=settings.REQUIRE_MENTION_ON_OPEN,
    )

    poller = IssuePoller(
        registry,
        github_client,
        triager,
        interval_seconds=settings.POLL_INTERVAL_SECONDS,
        issue_limit=settings.POLL_ISSUE_LIMIT,
    )

    return Services(
        token_cache=token_cache,
        registry=registry,
        github_client=github_client,
        triager=triager,
        loop_prevention=loop_prevention,
        handler=handler,
        poller=poller,
    )


def _warn_on_settings() -> None:
    for check in (
        settings.validate_webhook_settings,
        settings.validate_github_settings,
        settings.validate_llm_settings,
    ):
        try:
            check()
        except RuntimeError as exc:
            logger.warning("Configuration: %s", exc)


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner: str
    repo: str
    issue_number: int = Field(alias="issueNumber")


def create_app(services: Optional[Services] = None, start_poller: Optional[bool] = None) -> FastAPI:
    services = services or build_services()
    if start_poller is None:
        start_poller = settings.POLLER_ENABLED

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Validate configuration early, but keep serving
        _warn_on_settings()

        if start_poller:
            services.poller.start()

        try:
            yield
        finally:
            services.poller.stop()

    app = FastAPI(title="issuebot", lifespan=lifespan)
    app.state.services = services

    # =========================================================
    # Service info
    # =========================================================

    @app.get("/")
    async def index():
        return {
            "name": "issuebot",
            "bot": services.handler.mention_detector.bot_username,
            "endpoints": [
                "/health",
                "/webhook",
                "/repos",
                "/poller/start",
                "/poller/stop",
                "/analyze",
                "/stats",
            ],
        }

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/stats")
    async def stats():
        return {
            "loop_prevention": services.loop_prevention.stats(),
            "token_cache": services.token_cache.stats(),
            "poller": services.poller.stats(),
        }

    # =========================================================
    # Webhook
    # =========================================================

    @app.post("/webhook")
    async def github_webhook(
        request: Request,
        x_hub_signature_256: Optional[str] = Header(None),
        x_github_event: Optional[str] = Header(None),
        x_github_delivery: Optional[str] = Header(None),
    ):
        body = await request.body()
        logger.info("Received GitHub event: %s (%s)", x_github_event, x_github_delivery or "-")

        result = await services.handler.handle(
            x_github_delivery, x_github_event, body, x_hub_signature_256
        )

        if result.outcome == TriggerOutcome.REJECTED:
            raise HTTPException(status_code=401, detail="Invalid signature")

        return result.as_dict()

    # =========================================================
    # Repository registry
    # =========================================================

    @app.get("/repos")
    async def list_repos():
        return [r.model_dump(by_alias=True) for r in services.registry.list()]

    @app.post("/repos")
    async def add_repo(config: RepoConfig):
        services.handler.add_repo(config)
        logger.info("Registered repo %s", config.full_name)
        return {"status": "ok", "repo": config.model_dump(by_alias=True)}

    @app.delete("/repos/{owner}/{name}")
    async def remove_repo(owner: str, name: str):
        if not services.handler.remove_repo(owner, name):
            raise HTTPException(status_code=404, detail="Repository not registered")
        logger.info("Removed repo %s/%s", owner, name)
        return {"status": "ok"}

    # =========================================================
    # Poller control
    # =========================================================

    @app.post("/poller/start")
    async def start_poller_route():
        started = services.poller.start()
        return {"status": "started" if started else "already_running"}

    @app.post("/poller/stop")
    async def stop_poller_route():
        stopped = services.poller.stop()
        return {"status": "stopped" if stopped else "not_running"}

    # =========================================================
    # Manual analysis (no labels, no comments)
    # =========================================================

    @app.post("/analyze")
    async def analyze(req: AnalyzeRequest):
        try:
            issue = await services.github_client.get_issue(req.owner, req.repo, req.issue_number)
            comments = await services.github_client.get_issue_comments(
                req.owner, req.repo, req.issue_number
            )
        except RepoUnavailable:
            raise HTTPException(status_code=404, detail="Issue not found")
        except GitHubClientError as exc:
            logger.exception("Failed to fetch %s/%s#%s", req.owner, req.repo, req.issue_number)
            raise HTTPException(status_code=502, detail=str(exc))

        context = IssueContext(
            issue=issue,
            repository=RepositoryInfo.from_names(req.owner, req.repo),
            conversation=comments,
        )
        config = services.registry.get(f"{req.owner}/{req.repo}")

        try:
            analysis = await services.triager.analyze(context, config)
        except AnalysisFailure as exc:
            logger.exception("Manual analysis failed for %s", context.issue_key)
            raise HTTPException(status_code=500, detail=str(exc))

        return {
            "issue": context.issue_key,
            "classification": asdict(analysis.classification),
            "labels": analysis.labels,
            "confidence": analysis.confidence,
            "response": analysis.response,
        }

    return app


app = create_app()


# 👇 This makes `python -m issuebot.main` work
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "issuebot.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=False,
    )
