"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GITHUB_API_URL        — Source-control host REST base (default: api.github.com)
    CORE_API_URL          — System-of-record base URL (status updates, repo config)
    ACCESS_TOKEN          — Bearer token for the system of record
    OPENAI_API_KEY        — Primary completion provider API key
    OPENAI_BASE_URL       — Primary provider base URL (any OpenAI-compatible endpoint)
    AI_MODEL              — Model used for incident analysis
    AI_FAST_MODEL         — Model used for the judge and model-assisted fix application
    GROQ_API_KEY          — Fallback completion provider (Groq)
    OPENROUTER_API_KEY    — Second fallback completion provider (OpenRouter)
    FORMATTER_COMMAND     — Normalize step formatter, e.g. "npx prettier --stdin-filepath {file_path}"
    LINT_COMMAND          — Normalize step linter whose output is kept as diagnostics

Judge Loop:
    MAX_JUDGE_TURNS bounds the apply → normalize → judge cycle. When it is
    exhausted the loop falls back to deterministic-tier content, so the
    number of model-assisted rewrites per candidate never exceeds it.

CI Gate:
    CI_POLL_TIMEOUT_SECONDS is the budget for one polling pass over the
    check-runs of a head commit. A lint auto-retry adds exactly one more
    pass with the same budget.
"""
import os
from typing import Dict

from dotenv import load_dotenv

from autofix.core.errors import ConfigurationError

load_dotenv()

GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
CORE_API_URL = os.getenv("CORE_API_URL", "").rstrip("/")
ACCESS_TOKEN = os.getenv("ACCESS_TOKEN")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
AI_MODEL = os.getenv("AI_MODEL", "gpt-4.1")
AI_FAST_MODEL = os.getenv("AI_FAST_MODEL", "gpt-4.1-mini")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

# Provider health cooldown
PROVIDER_COOLDOWN_THRESHOLD = int(os.getenv("PROVIDER_COOLDOWN_THRESHOLD", 4))
PROVIDER_COOLDOWN_SKIP_COUNT = int(os.getenv("PROVIDER_COOLDOWN_SKIP_COUNT", 5))

# Validation loop
MAX_JUDGE_TURNS = int(os.getenv("MAX_JUDGE_TURNS", 3))

# Analysis tool loop
MAX_TOOL_ROUNDS = int(os.getenv("MAX_TOOL_ROUNDS", 8))

# CI gate polling (seconds)
CI_POLL_TIMEOUT_SECONDS = float(os.getenv("CI_POLL_TIMEOUT_SECONDS", 180))
CI_POLL_INTERVAL_SECONDS = float(os.getenv("CI_POLL_INTERVAL_SECONDS", 10))
CI_POLL_EMPTY_INTERVAL_SECONDS = float(os.getenv("CI_POLL_EMPTY_INTERVAL_SECONDS", 5))
CI_MAX_CONSECUTIVE_ERRORS = int(os.getenv("CI_MAX_CONSECUTIVE_ERRORS", 3))

# Run tracker eviction (seconds)
RUN_TRACKER_MAX_AGE_SECONDS = int(os.getenv("RUN_TRACKER_MAX_AGE_SECONDS", 900))

# Normalize service
FORMATTER_COMMAND = os.getenv("FORMATTER_COMMAND", "")
LINT_COMMAND = os.getenv("LINT_COMMAND", "")
NORMALIZE_TIMEOUT_SECONDS = int(os.getenv("NORMALIZE_TIMEOUT_SECONDS", 60))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:8000",
    ).split(",")
    if origin.strip()
]


def require_settings(settings: Dict[str, object]) -> None:
    """
    Fail fast when required settings are missing.

    Parameters
    ----------
    settings : dict
        Mapping of setting name → value. Empty strings and None count as missing.

    Raises
    ------
    ConfigurationError
        Listing every missing setting by name.
    """
    missing = [name for name, value in settings.items() if value in (None, "")]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
