import json

import pytest
from fastapi.testclient import TestClient

from issuebot.github.token_cache import TokenCache
from issuebot.main import Services, create_app
from issuebot.models import IssueInfo
from issuebot.poller.issue_poller import IssuePoller
from issuebot.security.webhook_verify import sign_payload
from issuebot.triage import IssueTriager
from issuebot.webhook.handler import WebhookHandler
from issuebot.webhook.loop_prevention import LoopPrevention
from issuebot.webhook.mention_detector import MentionDetector


SECRET = "s3cret"


@pytest.fixture
def services(github, analyzer, registry):
    token_cache = TokenCache()
    triager = IssueTriager(github, analyzer)
    loop_prevention = LoopPrevention("issuebot")
    return Services(
        token_cache=token_cache,
        registry=registry,
        github_client=github,
        triager=triager,
        loop_prevention=loop_prevention,
        handler=WebhookHandler(
            SECRET, registry, triager, loop_prevention,
            MentionDetector("issuebot"), token_cache=token_cache,
        ),
        poller=IssuePoller(registry, github, triager, interval_seconds=60),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services, start_poller=False)) as client:
        yield client


def _post_webhook(client, event, payload, secret=SECRET, delivery="d1"):
    body = json.dumps(payload).encode()
    return client.post(
        "/webhook",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-GitHub-Event": event,
            "X-GitHub-Delivery": delivery,
            "X-Hub-Signature-256": sign_payload(body, secret),
        },
    )


def test_index_and_health(client):
    assert client.get("/").json()["bot"] == "issuebot"

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert "timestamp" in health


def test_webhook_completed(client, github, issue_payload):
    resp = _post_webhook(client, "issues", issue_payload())

    assert resp.status_code == 200
    assert resp.json() == {"status": "completed"}
    assert github.posted == [("octo/repo", 1, "ack")]

    again = _post_webhook(client, "issues", issue_payload())
    assert again.json() == {"status": "ignored", "reason": "duplicate_event"}


def test_webhook_bad_signature(client, github, issue_payload):
    resp = _post_webhook(client, "issues", issue_payload(), secret="wrong")

    assert resp.status_code == 401
    assert github.posted == []


def test_repo_routes(client):
    resp = client.post("/repos", json={"owner": "octo", "name": "new", "autoRespond": False})
    assert resp.status_code == 200

    repos = {r["name"]: r for r in client.get("/repos").json()}
    assert set(repos) == {"repo", "new"}
    assert repos["new"]["autoRespond"] is False

    assert client.delete("/repos/octo/new").status_code == 200
    assert client.delete("/repos/octo/new").status_code == 404


def test_analyze_has_no_side_effects(client, github):
    github.issues[("octo/repo", 5)] = IssueInfo(number=5, title="Slow query", body="takes 10s", user="alice")

    resp = client.post("/analyze", json={"owner": "octo", "repo": "repo", "issue_number": 5})

    assert resp.status_code == 200
    data = resp.json()
    assert data["issue"] == "octo/repo#5"
    assert data["labels"] == ["bug"]
    assert data["classification"]["type"] == "bug"
    assert github.posted == [] and github.labels == []


def test_analyze_unknown_issue(client):
    resp = client.post("/analyze", json={"owner": "octo", "repo": "repo", "issueNumber": 404})
    assert resp.status_code == 502


def test_poller_routes(client):
    assert client.post("/poller/start").json() == {"status": "started"}
    assert client.post("/poller/start").json() == {"status": "already_running"}
    assert client.post("/poller/stop").json() == {"status": "stopped"}
    assert client.post("/poller/stop").json() == {"status": "not_running"}


def test_stats(client, issue_payload):
    _post_webhook(client, "issues", issue_payload())

    stats = client.get("/stats").json()
    assert stats["loop_prevention"] == {"processed_events": 1, "tracked_responses": 1}
    assert stats["token_cache"] == {"count": 0, "installations": []}
