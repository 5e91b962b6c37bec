import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# === Raw environment values ===

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

GITHUB_WEBHOOK_SECRET = os.getenv("GITHUB_WEBHOOK_SECRET")

# Static token for the REST client (optional when the gh CLI is used)
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")

# GitHub App authentication
GITHUB_APP_ID = os.getenv("GITHUB_APP_ID")
GITHUB_PRIVATE_KEY_PATH = os.getenv("GITHUB_PRIVATE_KEY_PATH")
GITHUB_INSTALLATION_ID = os.getenv("GITHUB_INSTALLATION_ID")

# "gh", "api" or "auto" (api when credentials are configured, gh otherwise)
GITHUB_CLIENT = os.getenv("GITHUB_CLIENT", "auto").strip().lower()

BOT_USERNAME = os.getenv("BOT_USERNAME", "issuebot")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

# 0 disables the bound
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "300"))

# Loop prevention
LOOP_COOLDOWN_MS = int(os.getenv("LOOP_COOLDOWN_MS", "30000"))
LOOP_MAX_TRACKED = int(os.getenv("LOOP_MAX_TRACKED", "1000"))

TOKEN_REFRESH_MARGIN_SECONDS = float(
    os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "300")
)

# Poller configuration
POLLER_ENABLED = _flag("POLLER_ENABLED", "false")
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "30"))
POLL_ISSUE_LIMIT = int(os.getenv("POLL_ISSUE_LIMIT", "10"))

# Triggering behaviour
REQUIRE_MENTION_ON_OPEN = _flag("REQUIRE_MENTION_ON_OPEN", "true")
COLLECT_RELATED_CONTEXT = _flag("COLLECT_RELATED_CONTEXT", "true")

REPOS_CONFIG_PATH = os.getenv("REPOS_CONFIG_PATH", "repos.json")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))


def validate_llm_settings() -> None:
    """
    Validate required LLM configuration.

    Raises RuntimeError if required keys are missing.
    """
    if not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY is not set")


def validate_github_settings() -> None:
    """
    Validate GitHub App configuration.

    Only enforced when an App id is configured; a static token or the gh CLI
    need nothing here. Raises RuntimeError if values are missing or invalid.
    """
    if not GITHUB_APP_ID:
        return

    if not GITHUB_PRIVATE_KEY_PATH:
        raise RuntimeError("GITHUB_PRIVATE_KEY_PATH is not set")

    if not os.path.exists(GITHUB_PRIVATE_KEY_PATH):
        raise RuntimeError(
            f"GITHUB_PRIVATE_KEY_PATH does not exist: {GITHUB_PRIVATE_KEY_PATH}"
        )


def validate_webhook_settings() -> None:
    if not GITHUB_WEBHOOK_SECRET:
        raise RuntimeError("GITHUB_WEBHOOK_SECRET is not set")
