import re
import time
from dataclasses import dataclass
from typing import Dict, Optional


BOT_AUTHOR = "bot_author"
DUPLICATE_EVENT = "duplicate_event"
RECENT_RESPONSE = "recent_response"

_ISSUE_NUMBER = re.compile(r"#(\d+)$")


@dataclass(frozen=True)
class LoopCheckResult:
    should_ignore: bool
    reason: Optional[str] = None


PROCEED = LoopCheckResult(should_ignore=False)


@dataclass
class RecentResponse:
    issue_number: int
    timestamp: float  # ms since epoch
    event_id: str


def _now_ms() -> float:
    return time.time() * 1000


class LoopPrevention:
    """
    Gate for inbound triggers so the bot never answers itself, never handles
    a redelivered webhook twice, and never answers one issue twice within the
    cooldown window.

    State is in-memory only. Both tables are capped at `max_tracked` entries.
    """

    def __init__(self, bot_username: str, cooldown_ms: int = 30_000, max_tracked: int = 1000):
        self.bot_username = bot_username
        self.cooldown_ms = cooldown_ms
        self.max_tracked = max_tracked

        # dict keeps insertion order; values unused
        self._processed_events: Dict[str, None] = {}
        self._recent_responses: Dict[str, RecentResponse] = {}

    def check(self, author: str, issue_key: str, event_id: str) -> LoopCheckResult:
        """
        Evaluate bot authorship, duplicate delivery and cooldown, in that
        order. Bot authorship goes first: the bot's own post would otherwise
        trip the cooldown it just recorded.
        """
        if self.is_bot_user(author):
            return LoopCheckResult(should_ignore=True, reason=BOT_AUTHOR)

        if event_id in self._processed_events:
            return LoopCheckResult(should_ignore=True, reason=DUPLICATE_EVENT)

        recent = self._recent_responses.get(issue_key)
        if recent and _now_ms() - recent.timestamp < self.cooldown_ms:
            return LoopCheckResult(should_ignore=True, reason=RECENT_RESPONSE)

        return PROCEED

    def mark_processed(self, event_id: str) -> None:
        if event_id in self._processed_events:
            return

        self._processed_events[event_id] = None

        # Oldest-inserted first
        while len(self._processed_events) > self.max_tracked:
            del self._processed_events[next(iter(self._processed_events))]

    def record_response(self, issue_key: str, event_id: str) -> None:
        self._recent_responses[issue_key] = RecentResponse(
            issue_number=_extract_issue_number(issue_key),
            timestamp=_now_ms(),
            event_id=event_id,
        )

        excess = len(self._recent_responses) - self.max_tracked
        if excess > 0:
            oldest = sorted(
                self._recent_responses.items(),
                key=lambda item: item[1].timestamp,
            )[:excess]
            for key, _ in oldest:
                del self._recent_responses[key]

    def is_bot_user(self, username: Optional[str]) -> bool:
        # TODO: the "[bot]" suffix rule also matches other Apps' accounts;
        # narrow it once an allow-list of peer bots exists.
        if not username:
            return False

        return (
            username == self.bot_username
            or username == f"{self.bot_username}[bot]"
            or username.endswith("[bot]")
        )

    def stats(self) -> Dict[str, int]:
        return {
            "processed_events": len(self._processed_events),
            "tracked_responses": len(self._recent_responses),
        }

    def clear(self) -> None:
        self._processed_events.clear()
        self._recent_responses.clear()


def _extract_issue_number(issue_key: str) -> int:
    match = _ISSUE_NUMBER.search(issue_key)
    return int(match.group(1)) if match else 0
