"""Text-generation capability backed by an OpenAI-compatible endpoint (OpenRouter)."""
from __future__ import annotations

import time
from typing import Any, Protocol

from researcher.config import settings
from researcher.errors import UpstreamFailure
from researcher.services import logger as log_service


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


def get_model() -> str:
    """Get the active model id."""
    return settings.default_model


def get_client() -> Any:
    """Get an AsyncOpenAI client pointed at OpenRouter."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(api_key=settings.openrouter_api_key, base_url=base_url)


class OpenRouterTextGenerator:
    """Sends a single user prompt and returns the reply text."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        caller: str = "pipeline",
    ):
        self._client = client
        self.model = model or get_model()
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.caller = caller

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def generate(self, prompt: str) -> str:
        t0 = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=self.caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                prompt_chars=len(prompt),
                error=str(e),
            )
            raise UpstreamFailure(f"Text generation failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        text = (getattr(choices[0].message, "content", None) or "") if choices else ""
        log_service.log_llm_call(
            model=self.model,
            caller=self.caller,
            duration_ms=int((time.monotonic() - t0) * 1000),
            prompt_chars=len(prompt),
            response_chars=len(text),
        )
        return text
