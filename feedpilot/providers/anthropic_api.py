# feedpilot/providers/anthropic_api.py
from typing import Optional

import httpx

from ..errors import ProviderError
from ..logging_setup import get_logger
from .base import AIProvider
from .prompts import SYSTEM_PROMPT

logger = get_logger("feedpilot.providers.anthropic")

API_BASE_URL = "https://api.anthropic.com"
API_VERSION = "2023-06-01"


class AnthropicProvider(AIProvider):
    """Messages API over plain httpx."""

    name = "anthropic_api"

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514",
                 language: str = "English", timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(language)
        self.model = model
        self.client = httpx.AsyncClient(
            base_url=API_BASE_URL,
            timeout=timeout,
            transport=transport,
            headers={
                "x-api-key": api_key,
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
        )

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        body = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            r = await self.client.post("/v1/messages", json=body)
        except httpx.HTTPError as e:
            raise ProviderError(f"Anthropic request failed: {type(e).__name__}: {e}") from e

        if r.status_code >= 400:
            raise ProviderError(f"Anthropic API error {r.status_code}: {r.text[:500]}")

        try:
            data = r.json()
        except ValueError as e:
            raise ProviderError("Anthropic returned a non-JSON body") from e

        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        ).strip()
        if not text:
            raise ProviderError("Anthropic returned an empty response")
        return text

    async def aclose(self) -> None:
        await self.client.aclose()
