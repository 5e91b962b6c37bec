import asyncio
from typing import Optional

from google import genai
from google.genai import types

from issuebot.logger import get_logger
from issuebot.settings import GEMINI_API_KEY, GEMINI_MODEL


logger = get_logger("issuebot.analyzer.gemini")

_client: Optional[genai.Client] = None


def _get_client() -> genai.Client:
    global _client

    if _client is not None:
        return _client

    if not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY is not set")

    _client = genai.Client(api_key=GEMINI_API_KEY)
    return _client


def _generate_sync(prompt: str, system_instruction: Optional[str]) -> str:
    client = _get_client()

    config = None
    if system_instruction:
        config = types.GenerateContentConfig(system_instruction=system_instruction)

    response = client.models.generate_content(
        model=GEMINI_MODEL,
        contents=prompt,
        config=config,
    )

    if getattr(response, "text", None):
        return response.text.strip()

    try:
        parts = response.candidates[0].content.parts
        if parts and parts[0].text:
            return parts[0].text.strip()
    except (AttributeError, IndexError, TypeError):
        logger.warning("Gemini returned no candidates")

    return ""


async def gemini_generate(prompt: str, system_instruction: Optional[str] = None) -> str:
    """
    Async-safe Gemini text generation. Errors propagate to the caller.
    """
    try:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _generate_sync, prompt, system_instruction)
    except Exception:
        logger.exception("Gemini generation failed")
        raise
