# feedpilot/providers/gateway.py
import asyncio
import time
from typing import List, Sequence

from ..config import Settings
from ..errors import ConfigError
from ..logging_setup import get_logger
from .base import (
    AIProvider,
    ArticleForScoring,
    ArticleForSummary,
    ScoreResult,
    StyleResult,
    SummaryResult,
)

logger = get_logger("feedpilot.providers.gateway")

PROVIDERS = ("openai", "anthropic_api", "claude_cli", "gemini_cli", "codex_cli")


class ProviderGateway:
    """
    The only way pipeline stages reach a provider. One semaphore, shared by
    every stage, caps how many provider calls are in flight.
    """

    def __init__(self, provider: AIProvider, concurrency: int = 2):
        self.provider = provider
        self.concurrency = max(1, concurrency)
        self._permits = asyncio.Semaphore(self.concurrency)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def _call(self, label: str, fn, *args):
        async with self._permits:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            t0 = time.perf_counter()
            try:
                return await fn(*args)
            finally:
                self.in_flight -= 1
                logger.debug(
                    "PROVIDER_CALL",
                    extra={
                        "provider": self.provider.name,
                        "call": label,
                        "elapsed_ms": round((time.perf_counter() - t0) * 1000),
                    },
                )

    async def batch_summarize(self, articles: Sequence[ArticleForSummary]) -> List[SummaryResult]:
        if not articles:
            return []
        return await self._call("batch_summarize", self.provider.batch_summarize, list(articles))

    async def extract_tags(self, content: str) -> List[str]:
        return await self._call("extract_tags", self.provider.extract_tags, content)

    async def batch_score_relevance(self, articles: Sequence[ArticleForScoring],
                                    interests: Sequence[str]) -> List[ScoreResult]:
        if not articles:
            return []
        return await self._call(
            "batch_score_relevance", self.provider.batch_score_relevance, list(articles), list(interests)
        )

    async def classify_style(self, content: str) -> StyleResult:
        return await self._call("classify_style", self.provider.classify_style, content)

    async def aclose(self) -> None:
        await self.provider.aclose()


def build_provider(settings: Settings) -> AIProvider:
    """Pick the backend named by AI_PROVIDER. Missing credentials raise ConfigError."""
    name = settings.ai_provider
    if name == "openai":
        if not settings.openai_api_key:
            raise ConfigError("AI_PROVIDER=openai but OPENAI_API_KEY is not set")
        from .openai_api import OpenAIProvider
        return OpenAIProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            language=settings.summary_language,
        )
    if name == "anthropic_api":
        if not settings.anthropic_api_key:
            raise ConfigError("AI_PROVIDER=anthropic_api but ANTHROPIC_API_KEY is not set")
        from .anthropic_api import AnthropicProvider
        return AnthropicProvider(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            language=settings.summary_language,
        )
    if name in ("claude_cli", "gemini_cli", "codex_cli"):
        from .cli import CliKind, CliProvider
        return CliProvider(CliKind(name[: -len("_cli")]), language=settings.summary_language)
    raise ConfigError(f"Unknown AI_PROVIDER {name!r}; expected one of {', '.join(PROVIDERS)}")


def build_gateway(settings: Settings) -> ProviderGateway:
    return ProviderGateway(build_provider(settings), concurrency=settings.ai_concurrency)
