import time
from typing import Any, Dict, Optional

import httpx
import jwt

from issuebot.github.token_cache import TokenCache
from issuebot.logger import get_logger


logger = get_logger("issuebot.github.auth")

GITHUB_API = "https://api.github.com"


class GitHubAppAuth:
    """
    GitHub App credential issuer: signs an App JWT and exchanges it for
    installation tokens, which are kept in the shared TokenCache.
    """

    def __init__(
        self,
        app_id: str,
        private_key_path: str,
        token_cache: TokenCache,
        default_installation_id: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self.private_key_path = private_key_path
        self.token_cache = token_cache
        self.default_installation_id = default_installation_id
        self._transport = transport
        self._private_key: Optional[str] = None

    def _load_private_key(self) -> str:
        if self._private_key is not None:
            return self._private_key

        if not self.private_key_path:
            raise RuntimeError("GITHUB_PRIVATE_KEY_PATH is not set")

        try:
            with open(self.private_key_path, "r") as f:
                self._private_key = f.read()
                return self._private_key
        except OSError as exc:
            raise RuntimeError(
                f"Failed to read GitHub private key at {self.private_key_path}"
            ) from exc

    def create_jwt(self) -> str:
        if not self.app_id:
            raise RuntimeError("GITHUB_APP_ID is not set")

        now = int(time.time())
        payload = {
            "iat": now - 30,
            "exp": now + 9 * 60,
            "iss": str(self.app_id),
        }

        private_key = self._load_private_key()
        return jwt.encode(payload, private_key, algorithm="RS256")

    def _app_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.create_jwt()}",
            "Accept": "application/vnd.github+json",
        }

    async def resolve_installation_id(self) -> int:
        """
        Configured installation id, else the first installation of the App.
        """
        if self.default_installation_id is not None:
            return self.default_installation_id

        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.get(
                f"{GITHUB_API}/app/installations",
                headers=self._app_headers(),
            )
            resp.raise_for_status()
            installations = resp.json()

        if not installations:
            raise RuntimeError("No GitHub App installations found")

        self.default_installation_id = installations[0]["id"]
        return self.default_installation_id

    async def get_installation_token(self, installation_id: Optional[int] = None) -> str:
        """
        Return a GitHub installation access token, cached until it gets
        within the cache's refresh margin.
        """
        if installation_id is None:
            installation_id = await self.resolve_installation_id()

        cached = self.token_cache.get(installation_id)
        if cached:
            return cached

        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.post(
                f"{GITHUB_API}/app/installations/{installation_id}/access_tokens",
                headers=self._app_headers(),
            )
            resp.raise_for_status()
            data = resp.json()

        token = data["token"]
        expires_at = data["expires_at"]
        self.token_cache.set(installation_id, token, expires_at)

        logger.info(
            "New installation token for %s, expires at %s",
            installation_id,
            expires_at,
        )
        return token

    def invalidate(self, installation_id: Optional[int] = None) -> None:
        """
        Drop a cached token after the API rejected it.
        """
        if installation_id is None:
            installation_id = self.default_installation_id

        if installation_id is None:
            self.token_cache.clear_all()
        else:
            self.token_cache.clear(installation_id)

    @staticmethod
    def get_installation_id_from_payload(payload: Dict[str, Any]) -> Optional[int]:
        return (payload.get("installation") or {}).get("id")
