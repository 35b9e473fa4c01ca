"""
taskbot — LLM Provider Abstraction.

`LLMClient.complete()` routes to the configured provider. The client is built
once from Settings and handed to whoever needs it (the fallback interpreter).
Supports: openai (default), anthropic, gemini, cohere.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from taskbot.config import Settings

logger = logging.getLogger(__name__)

# Type alias for provider implementations
_ProviderFn = Callable[[str, str, str, str, int], Awaitable[str]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(
            max_output_tokens=max_tokens,
            temperature=0,
        ),
    )
    return response.text


async def _complete_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=0,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _complete_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        temperature=0,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _complete_cohere(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        temperature=0,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider table
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


class LLMClient:
    """A configured completion endpoint with a hard timeout."""

    def __init__(
        self,
        provider: str,
        api_key: str,
        model: str = "",
        timeout_seconds: float = 15.0,
    ) -> None:
        provider_name = provider.lower()
        if provider_name not in _PROVIDERS:
            raise ValueError(
                f"Unknown LLM_PROVIDER={provider_name!r}. "
                f"Supported: {', '.join(_PROVIDERS)}"
            )
        fn, default_model = _PROVIDERS[provider_name]
        self._fn = fn
        self.provider = provider_name
        self.model = model or default_model
        self._api_key = api_key
        self.timeout_seconds = timeout_seconds
        logger.info("LLM provider: %s, model: %s", self.provider, self.model)

    @classmethod
    def from_settings(cls, settings: Settings) -> LLMClient | None:
        """Build the client, or None when no API key is configured."""
        if not settings.llm_configured:
            logger.info("LLM_API_KEY not set — fallback interpreter disabled")
            return None
        return cls(
            provider=settings.LLM_PROVIDER,
            api_key=settings.LLM_API_KEY,
            model=settings.LLM_MODEL,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
        )

    async def complete(self, system: str, user_message: str, max_tokens: int = 512) -> str:
        """Send a prompt to the provider and return the response text.

        Raises on API errors and on timeout (asyncio.TimeoutError); callers
        should handle exceptions.
        """
        return await asyncio.wait_for(
            self._fn(self._api_key, self.model, system, user_message, max_tokens),
            timeout=self.timeout_seconds,
        )
