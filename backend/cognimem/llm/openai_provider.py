"""
OpenAI LLM Provider

Chat Completions for extraction, link prediction and replies;
Embeddings API for the semantic tier.
"""
from typing import Optional
import logging

import openai
from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from .base import LLMProvider, LLMError, LLMRateLimitError, LLMConfigurationError
from ..config import settings

logger = logging.getLogger(__name__)

# Transient failures worth another attempt; everything else fails fast
_RETRYABLE = (openai.RateLimitError, openai.APIConnectionError, openai.APITimeoutError)


def _translate(e: Exception, what: str) -> LLMError:
    if isinstance(e, openai.RateLimitError):
        return LLMRateLimitError(f"OpenAI rate limit: {e}")
    return LLMError(f"OpenAI {what} error: {e}")


class OpenAIProvider(LLMProvider):
    """
    OpenAI API implementation.

    Model names come from config.py per tier; the client can be injected.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        if client is None:
            if not settings.openai_api_key:
                raise LLMConfigurationError("OPENAI_API_KEY is required for OpenAI provider")
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_RETRYABLE),
        reraise=True,
    )
    async def _chat(self, **kwargs):
        return await self.client.chat.completions.create(**kwargs)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_RETRYABLE),
        reraise=True,
    )
    async def _embed(self, **kwargs):
        return await self.client.embeddings.create(**kwargs)

    async def generate_text(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Generate text using the Chat Completions API."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._chat(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            raise _translate(e, "chat") from e

        return response.choices[0].message.content or ""

    async def embed_text(
        self,
        texts: list[str],
        model: str,
    ) -> list[list[float]]:
        """Embed a batch of texts in one request."""
        if not texts:
            return []
        try:
            response = await self._embed(model=model, input=texts)
        except openai.OpenAIError as e:
            raise _translate(e, "embedding") from e

        return [item.embedding for item in response.data]
