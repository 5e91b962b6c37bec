import asyncio
import json
import re
from typing import Awaitable, Callable, List, Optional

from issuebot.analyzer.context_collector import build_conversation_text, describe_local_repo
from issuebot.analyzer.gemini_client import gemini_generate
from issuebot.logger import get_logger
from issuebot.models import (
    ISSUE_TYPES,
    PRIORITIES,
    AnalysisResult,
    IssueClassification,
    IssueContext,
)


logger = get_logger("issuebot.analyzer.agent")

# Pollers look for this string to tell whether an issue was already answered
AI_RESPONSE_MARKER = "🤖 **AI Assistant Response**"

RESPONSE_HEADER = (
    f"> {AI_RESPONSE_MARKER}\n"
    ">\n"
    "> _This response was generated automatically by AI and may be inaccurate. "
    "Please treat it as a reference._\n\n"
    "---\n\n"
)

DEFAULT_CONFIDENCE = 0.8

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_FENCE_OPEN = re.compile(r"^```[\w-]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")
_META_HEADING = re.compile(r"^(?:Approach|Analysis|Summary|Response)[ \t]*(?::|\n)\s*", re.IGNORECASE)


class AnalysisFailure(Exception):
    """
    Raised when the analysis engine errors, times out, or returns nothing usable.
    """
    pass


Generate = Callable[..., Awaitable[str]]


# =========================================================
# Output parsing
# =========================================================

def parse_classification(text: str):
    """
    Pull the classification JSON out of a model reply. Malformed output
    falls back to an "other"/"medium" classification with no labels.
    """
    fallback = (IssueClassification(), [], DEFAULT_CONFIDENCE)

    match = _JSON_OBJECT.search(text or "")
    if not match:
        return fallback

    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return fallback

    if not isinstance(parsed, dict):
        return fallback

    issue_type = str(parsed.get("type") or "other").lower()
    priority = str(parsed.get("priority") or "medium").lower()
    area = parsed.get("area") or None

    labels = parsed.get("suggestedLabels") or []
    if not isinstance(labels, list):
        labels = []
    labels = [str(l).strip() for l in labels if str(l).strip()]

    try:
        confidence = float(parsed.get("confidence", DEFAULT_CONFIDENCE))
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE

    classification = IssueClassification(
        type=issue_type if issue_type in ISSUE_TYPES else "other",
        priority=priority if priority in PRIORITIES else "medium",
        area=str(area) if area else None,
    )
    return classification, labels, min(max(confidence, 0.0), 1.0)


def format_response(text: str) -> str:
    """
    Strip a wrapping code fence and leading meta headings, then prefix the
    AI response header. Returns "" when nothing is left.
    """
    cleaned = (text or "").strip()

    if cleaned.startswith("```") and cleaned.endswith("```") and len(cleaned) > 6:
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned)).strip()

    cleaned = _META_HEADING.sub("", cleaned).strip()
    if not cleaned:
        return ""

    return RESPONSE_HEADER + cleaned


# =========================================================
# Prompts
# =========================================================

def build_system_prompt(context: IssueContext) -> str:
    return f"""You are an AI assistant that responds to GitHub issues.

Repository: {context.repository.full_name}

CRITICAL RULES:
1. Output ONLY the final response that will be posted as a GitHub comment
2. Do NOT include meta-commentary such as "Approach:", "Summary:" or "Analysis:"
3. Do NOT explain your reasoning or thought process in the response
4. Do NOT wrap the response in a markdown code block
5. Write as if talking directly to the issue author

Guidelines:
- Be concise and professional
- Use Markdown (headers, tables, code blocks) where it helps
- If the issue is off-topic, redirect politely"""


def build_analysis_prompt(context: IssueContext, repo_listing: Optional[str] = None) -> str:
    issue = context.issue
    sections: List[str] = [
        "## GitHub Issue Analysis",
        "",
        f"**Repository:** {context.repository.full_name}",
        f"**Issue #{issue.number}:** {issue.title}",
        f"**Author:** {issue.user}",
        f"**Created:** {issue.created_at}",
        f"**Current Labels:** {', '.join(issue.labels) or 'None'}",
        "",
        "### Issue Body:",
        issue.body or "(No description provided)",
    ]

    if context.conversation:
        sections += ["", "### Conversation so far:", build_conversation_text(context.conversation)]

    if context.request:
        sections += ["", "### Request addressed to you:", context.request]

    collected = context.collected
    if collected and collected.related_issues:
        sections += ["", "### Possibly related issues:"]
        sections += [f"- #{i.number} ({i.status}) {i.title}" for i in collected.related_issues]

    if collected and collected.recent_prs:
        sections += ["", "### Recent pull requests:"]
        sections += [
            f"- #{pr.number} ({'merged' if pr.merged else pr.state}) {pr.title}"
            for pr in collected.recent_prs
        ]

    if collected and collected.recent_closed:
        sections += ["", "### Recently closed issues:"]
        sections += [f"- #{i.number} {i.title}" for i in collected.recent_closed]

    if repo_listing:
        sections += ["", "### Repository files:", repo_listing]

    sections += ["", "---"]
    return "\n".join(sections)


CLASSIFICATION_INSTRUCTIONS = """First classify this issue. Reply with JSON only:
{
  "type": "bug" | "feature" | "question" | "documentation" | "enhancement" | "other",
  "priority": "critical" | "high" | "medium" | "low",
  "area": "affected area (e.g. frontend, backend, infra, docs)",
  "suggestedLabels": ["label1", "label2"],
  "confidence": 0.0-1.0
}"""

RESPONSE_INSTRUCTIONS = """Write the reply that will be posted directly as a GitHub issue comment.

Include:
- Confirmation that you understood the problem
- Likely causes or a direction for the fix
- A request for more information if needed

Output only the reply itself."""

RESPONSE_INSTRUCTIONS_WITH_CODE = """Write the reply that will be posted directly as a GitHub issue comment.
Use the repository file list to point at the concrete files involved and propose a specific fix.

Output only the reply itself."""


# =========================================================
# Analyzer
# =========================================================

class IssueAnalyzer:
    """
    Two-step LLM analysis: a JSON classification, then the comment text.
    """

    def __init__(self, generate: Generate = gemini_generate, timeout_seconds: float = 300):
        self.generate = generate
        self.timeout_seconds = timeout_seconds

    async def analyze_issue(self, context: IssueContext, repo_path: Optional[str] = None) -> AnalysisResult:
        try:
            if self.timeout_seconds and self.timeout_seconds > 0:
                return await asyncio.wait_for(
                    self._analyze(context, repo_path),
                    timeout=self.timeout_seconds,
                )
            return await self._analyze(context, repo_path)
        except AnalysisFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise AnalysisFailure(
                f"Analysis of {context.issue_key} timed out after {self.timeout_seconds}s"
            ) from exc
        except Exception as exc:
            raise AnalysisFailure(f"Analysis of {context.issue_key} failed: {exc}") from exc

    async def _analyze(self, context: IssueContext, repo_path: Optional[str]) -> AnalysisResult:
        repo_listing = None
        if repo_path:
            loop = asyncio.get_running_loop()
            repo_listing = await loop.run_in_executor(None, describe_local_repo, repo_path)

        system_prompt = build_system_prompt(context)
        analysis_prompt = build_analysis_prompt(context, repo_listing)

        classification_reply = await self.generate(
            f"{analysis_prompt}\n\n{CLASSIFICATION_INSTRUCTIONS}",
            system_prompt,
        )
        classification, labels, confidence = parse_classification(classification_reply)

        instructions = RESPONSE_INSTRUCTIONS_WITH_CODE if repo_listing else RESPONSE_INSTRUCTIONS
        detail_reply = await self.generate(
            f"{analysis_prompt}\n\n"
            f"Classification: type={classification.type}, priority={classification.priority}\n\n"
            f"{instructions}",
            system_prompt,
        )

        response = format_response(detail_reply)
        if not response:
            raise AnalysisFailure(f"Empty response for {context.issue_key}")

        return AnalysisResult(
            classification=classification,
            labels=labels,
            response=response,
            confidence=confidence,
        )
