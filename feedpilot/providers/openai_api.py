# feedpilot/providers/openai_api.py
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from ..errors import ProviderError
from ..logging_setup import get_logger
from .base import AIProvider
from .prompts import SYSTEM_PROMPT

logger = get_logger("feedpilot.providers.openai")


class OpenAIProvider(AIProvider):
    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", base_url: Optional[str] = None,
                 language: str = "English", timeout: float = 120.0,
                 client: Optional[AsyncOpenAI] = None):
        super().__init__(language)
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                temperature=0.2,
                max_tokens=max_tokens,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIError as e:
            raise ProviderError(f"OpenAI request failed: {type(e).__name__}: {e}") from e

        content = resp.choices[0].message.content if resp.choices else None
        if not content or not content.strip():
            raise ProviderError("OpenAI returned an empty response")
        return content.strip()

    async def aclose(self) -> None:
        await self.client.close()
