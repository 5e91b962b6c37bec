import pytest

from issuebot.analyzer.context_collector import ContextCollector
from issuebot.models import IssueContext, IssueInfo, RepoConfig, RepositoryInfo
from issuebot.triage import IssueTriager


def _context(number=1):
    return IssueContext(
        issue=IssueInfo(number=number, title="Parser fails on unicode input", body="stack trace", user="alice"),
        repository=RepositoryInfo.from_names("octo", "repo"),
    )


@pytest.mark.asyncio
async def test_run_labels_and_comments(github, analyzer):
    result = await IssueTriager(github, analyzer).run(_context(), RepoConfig(owner="octo", name="repo"))

    assert result.labeled and result.responded
    assert result.comment_id == 1001
    assert github.labels == [("octo/repo", 1, ["bug"])]


@pytest.mark.asyncio
async def test_no_labels_means_no_label_call(github, analyzer):
    analyzer.labels = []
    result = await IssueTriager(github, analyzer).run(_context(), RepoConfig(owner="octo", name="repo"))

    assert result.labeled is False
    assert github.labels == []


@pytest.mark.asyncio
async def test_respond_unconditionally(github, analyzer):
    config = RepoConfig(owner="octo", name="repo", auto_respond=False)
    triager = IssueTriager(github, analyzer)

    quiet = await triager.run(_context(), config)
    loud = await triager.run(_context(), config, respond_unconditionally=True)

    assert quiet.responded is False
    assert loud.responded is True
    assert len(github.posted) == 1


@pytest.mark.asyncio
async def test_comment_failure_is_swallowed(github, analyzer):
    github.fail_comments = True
    result = await IssueTriager(github, analyzer).run(_context(), RepoConfig(owner="octo", name="repo"))

    assert result.labeled is True
    assert result.responded is False


@pytest.mark.asyncio
async def test_collects_context_once(github, analyzer):
    triager = IssueTriager(github, analyzer, ContextCollector(github))
    context = _context()

    await triager.analyze(context)

    assert context.collected is not None
    assert analyzer.calls[0] is context


@pytest.mark.asyncio
async def test_existing_local_clone_used(github, analyzer, tmp_path):
    config = RepoConfig(owner="octo", name="repo", local_path=str(tmp_path))
    path = await IssueTriager(github, analyzer).ensure_local_clone(config)

    assert path == str(tmp_path)
    assert github.cloned == []


@pytest.mark.asyncio
async def test_missing_clone_attempted_once(github, analyzer, tmp_path):
    target = str(tmp_path / "clone")
    config = RepoConfig(owner="octo", name="repo", localPath=target)
    triager = IssueTriager(github, analyzer)

    assert await triager.ensure_local_clone(config) == target
    # the fake does not create the directory, so a second call must not retry
    assert await triager.ensure_local_clone(config) is None
    assert github.cloned == [("octo/repo", target)]


@pytest.mark.asyncio
async def test_no_local_path(github, analyzer):
    assert await IssueTriager(github, analyzer).ensure_local_clone(RepoConfig(owner="o", name="r")) is None
