import re
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MentionResult:
    is_mentioned: bool
    # Offset of the first match, -1 when not mentioned
    mentioned_at: int
    mention_type: str  # "direct" | "none"


NOT_MENTIONED = MentionResult(is_mentioned=False, mentioned_at=-1, mention_type="none")

_QUOTE_LINE = re.compile(r"^>\s*.+$", re.MULTILINE)


class MentionDetector:
    """
    Regex-based detection of text addressed to the bot.

    Accepts `@name` and `@name[bot]` (how GitHub renders App accounts),
    case-insensitive. A longer login sharing the prefix, such as
    `@name-extra`, is not a mention.
    """

    def __init__(self, bot_username: str):
        self.bot_username = bot_username

        escaped = re.escape(bot_username)
        self._patterns = (
            re.compile(rf"(?<![\w-])@{escaped}(?:\[bot\])?(?![\w-])", re.IGNORECASE),
        )

    def _first_match(self, text: Optional[str]):
        if not text:
            return None

        for pattern in self._patterns:
            match = pattern.search(text)
            if match:
                return match

        return None

    def detect(self, text: Optional[str]) -> MentionResult:
        match = self._first_match(text)
        if not match:
            return NOT_MENTIONED

        return MentionResult(
            is_mentioned=True,
            mentioned_at=match.start(),
            mention_type="direct",
        )

    def extract_message_after_mention(self, text: Optional[str]) -> Optional[str]:
        """
        Return what follows the first mention, so "@bot do X" yields "do X".
        """
        match = self._first_match(text)
        if not match:
            return None

        after = text[match.end():].strip()
        return after or None

    def is_reply_to_bot(self, text: Optional[str], previous_bot_comment: Optional[str]) -> bool:
        """
        Heuristic for GitHub quote replies: the comment quotes something and
        the start of the quoted text appears in the bot's previous comment.
        """
        if not previous_bot_comment or not text:
            return False

        if not _QUOTE_LINE.search(text):
            return False

        quoted = " ".join(
            line[1:].strip()
            for line in text.split("\n")
            if line.startswith(">")
        )

        return quoted[:50] in previous_bot_comment
