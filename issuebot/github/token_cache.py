from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Hashable, List, Union


@dataclass
class CachedToken:
    token: str
    expires_at: datetime


def parse_expiry(value: Union[datetime, str]) -> datetime:
    """
    Accept an aware datetime or GitHub's ISO-8601 timestamp ("...Z").
    Naive datetimes are taken as UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCache:
    """
    Installation token cache keyed by installation id.

    A token is only handed out while it still has more than
    `refresh_margin_seconds` left; otherwise the entry is dropped and the
    caller has to mint a new one.
    """

    def __init__(self, refresh_margin_seconds: float = 5 * 60):
        self.refresh_margin = timedelta(seconds=refresh_margin_seconds)
        self._cache: Dict[Hashable, CachedToken] = {}

    def get(self, key: Hashable):
        cached = self._cache.get(key)
        if cached is None:
            return None

        if _utcnow() + self.refresh_margin >= cached.expires_at:
            # Expired or expiring soon
            del self._cache[key]
            return None

        return cached.token

    def set(self, key: Hashable, token: str, expires_at: Union[datetime, str]) -> None:
        self._cache[key] = CachedToken(token=token, expires_at=parse_expiry(expires_at))

    def has(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def clear(self, key: Hashable) -> None:
        self._cache.pop(key, None)

    def clear_all(self) -> None:
        self._cache.clear()

    def stats(self) -> Dict[str, Union[int, List[Hashable]]]:
        return {
            "count": len(self._cache),
            "installations": list(self._cache.keys()),
        }
