"""
LLM Router
==========
Decides which completion provider serves a request and tracks provider
health across requests.

Routing Strategy:
    1. Try the configured OpenAI-compatible primary first
    2. On failure (HTTP error, timeout, rate limit, schema-invalid output) → Groq
    3. Then OpenRouter; when every provider fails the caller gets CompletionError

Provider Health Tracking:
    - Consecutive failures are counted per provider
    - After PROVIDER_COOLDOWN_THRESHOLD failures a provider sits out the next
      PROVIDER_COOLDOWN_SKIP_COUNT selections, then is re-enabled cautiously
    - Providers without an API key are never selected

The router is shared by every concurrent workflow in the process; its state
is advisory (a stale health reading only costs one extra failed call).
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Any, Optional

from autofix.core.config import (
    OPENAI_API_KEY, OPENAI_BASE_URL, AI_MODEL, AI_FAST_MODEL,
    GROQ_API_KEY, OPENROUTER_API_KEY,
    PROVIDER_COOLDOWN_THRESHOLD, PROVIDER_COOLDOWN_SKIP_COUNT,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Provider Configuration
# ---------------------------------------------------------------------------
@dataclass
class ProviderConfig:
    """Configuration for a single OpenAI-compatible provider."""
    name: str
    api_key: str
    base_url: str
    model: str
    fast_model: str = ""
    max_retries: int = 2
    timeout_seconds: int = 60
    supports_json_schema: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def model_for(self, fast: bool) -> str:
        return (self.fast_model or self.model) if fast else self.model


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    api_key=OPENAI_API_KEY or "",
    base_url=OPENAI_BASE_URL,
    model=AI_MODEL,
    fast_model=AI_FAST_MODEL,
    supports_json_schema=True,
)

GROQ_CONFIG = ProviderConfig(
    name="groq",
    api_key=GROQ_API_KEY or "",
    base_url="https://api.groq.com/openai/v1",
    model="llama-3.3-70b-versatile",
    fast_model="llama-3.1-8b-instant",
)

OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    api_key=OPENROUTER_API_KEY or "",
    base_url="https://openrouter.ai/api/v1",
    model="openai/gpt-4.1",
    fast_model="openai/gpt-4.1-mini",
    max_retries=1,
)


# ---------------------------------------------------------------------------
# Provider Health Tracker
# ---------------------------------------------------------------------------
@dataclass
class ProviderHealth:
    """Tracks consecutive failures and cooldown for a provider."""
    consecutive_failures: int = 0
    is_healthy: bool = True
    max_failures: int = PROVIDER_COOLDOWN_THRESHOLD
    cooldown_remaining: int = 0

    def record_failure(self) -> None:
        """Record a failure. Enter cooldown after max consecutive failures."""
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures and self.is_healthy:
            self.is_healthy = False
            self.cooldown_remaining = PROVIDER_COOLDOWN_SKIP_COUNT
            logger.warning(
                "Provider entering cooldown after %d failures (skip %d selections)",
                self.consecutive_failures, self.cooldown_remaining,
            )

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def tick_cooldown(self) -> None:
        """Decrement cooldown. Re-enable (one failure from cooldown) when it expires."""
        if self.cooldown_remaining > 0:
            self.cooldown_remaining -= 1
            if self.cooldown_remaining <= 0:
                self.is_healthy = True
                self.consecutive_failures = max(1, self.max_failures - 1)
                logger.info("Provider cooldown expired, re-enabled")

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.is_healthy = True
        self.cooldown_remaining = 0


# ---------------------------------------------------------------------------
# LLM Router
# ---------------------------------------------------------------------------
class LLMRouter:
    """
    Orders configured providers for a request.

    Usage:
        router = LLMRouter()
        for provider in router.candidates():
            ...
            router.report_success(provider.name)   # or report_failure(...)
    """

    def __init__(self, providers: Optional[List[ProviderConfig]] = None) -> None:
        if providers is None:
            providers = [OPENAI_CONFIG, GROQ_CONFIG, OPENROUTER_CONFIG]
        self._providers: List[ProviderConfig] = [p for p in providers if p.configured]
        self._health: Dict[str, ProviderHealth] = {p.name: ProviderHealth() for p in self._providers}
        if not self._providers:
            logger.warning("No completion provider has an API key configured")

    @property
    def providers(self) -> List[ProviderConfig]:
        return list(self._providers)

    def candidates(self) -> List[ProviderConfig]:
        """
        Providers to try for one request, in order.

        Healthy providers come first in configured order. When every provider
        is cooling down, the primary is returned alone as a last resort.

        Returns
        -------
        list of ProviderConfig
            Empty only when no provider is configured at all.
        """
        for health in self._health.values():
            health.tick_cooldown()

        healthy = [p for p in self._providers if self._health[p.name].is_healthy]
        if healthy:
            return healthy
        if self._providers:
            logger.warning("All providers unhealthy, falling back to primary")
            return [self._providers[0]]
        return []

    def report_success(self, provider_name: str) -> None:
        health = self._health.get(provider_name)
        if health:
            health.record_success()

    def report_failure(self, provider_name: str) -> None:
        health = self._health.get(provider_name)
        if health:
            health.record_failure()

    def reset(self) -> None:
        for health in self._health.values():
            health.reset()

    def get_health(self, provider_name: str) -> Optional[ProviderHealth]:
        return self._health.get(provider_name)

    @property
    def provider_health_state(self) -> Dict[str, Any]:
        """Per-provider health and cooldown, exposed on /health."""
        return {
            name: {
                "is_healthy": h.is_healthy,
                "consecutive_failures": h.consecutive_failures,
                "cooldown_remaining": h.cooldown_remaining,
            }
            for name, h in self._health.items()
        }
