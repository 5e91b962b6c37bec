from typing import Optional

from issuebot import settings
from issuebot.github.api import GitHubApiClient
from issuebot.github.auth import GitHubAppAuth
from issuebot.github.client import GitHubClient
from issuebot.github.gh_cli import GhCliClient
from issuebot.github.token_cache import TokenCache
from issuebot.logger import get_logger


logger = get_logger("issuebot.github.factory")


def create_app_auth(token_cache: TokenCache) -> Optional[GitHubAppAuth]:
    if not settings.GITHUB_APP_ID:
        return None

    installation_id = settings.GITHUB_INSTALLATION_ID
    return GitHubAppAuth(
        app_id=settings.GITHUB_APP_ID,
        private_key_path=settings.GITHUB_PRIVATE_KEY_PATH,
        token_cache=token_cache,
        default_installation_id=int(installation_id) if installation_id else None,
    )


def create_github_client(auth: Optional[GitHubAppAuth] = None) -> GitHubClient:
    """
    Pick the repository backend from GITHUB_CLIENT.

    "auto" uses the REST client when a token or App credentials exist and
    falls back to the gh CLI otherwise.
    """
    mode = settings.GITHUB_CLIENT
    has_credentials = bool(settings.GITHUB_TOKEN or auth is not None)

    if mode == "gh" or (mode == "auto" and not has_credentials):
        logger.info("Using gh CLI repository client")
        return GhCliClient()

    if not has_credentials:
        raise RuntimeError("GITHUB_CLIENT=api needs GITHUB_TOKEN or GitHub App settings")

    logger.info("Using REST repository client")
    return GitHubApiClient(token=settings.GITHUB_TOKEN, auth=auth)
