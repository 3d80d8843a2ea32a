"""
Google Gemini LLM Provider

Implementation using Google's Generative AI SDK.
"""
from typing import Optional
import asyncio
import logging

import google.generativeai as genai
from tenacity import retry, stop_after_attempt, wait_exponential

from .base import LLMProvider, LLMError, LLMRateLimitError, LLMConfigurationError
from ..config import settings

logger = logging.getLogger(__name__)


def _translate(e: Exception, what: str) -> LLMError:
    error_str = str(e).lower()
    if "quota" in error_str or "rate" in error_str:
        return LLMRateLimitError(f"Gemini rate limit: {e}")
    return LLMError(f"Gemini {what} error: {e}")


class GeminiProvider(LLMProvider):
    """
    Google Gemini API implementation.

    Gemini has no separate system role in generate_content, so the
    system prompt is prepended to the user prompt.
    """

    def __init__(self):
        if not settings.gemini_api_key:
            raise LLMConfigurationError("GEMINI_API_KEY is required for Gemini provider")
        genai.configure(api_key=settings.gemini_api_key)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def generate_text(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Generate text using the Gemini Generative API."""
        gen_model = genai.GenerativeModel(model_name=model)
        generation_config = genai.GenerationConfig(
            max_output_tokens=max_tokens,
            temperature=temperature,
        )

        full_prompt = prompt
        if system_prompt:
            full_prompt = f"{system_prompt}\n\n---\n\n{prompt}"

        try:
            response = await gen_model.generate_content_async(
                full_prompt,
                generation_config=generation_config,
            )
        except Exception as e:
            raise _translate(e, "generation") from e

        return response.text or ""

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def embed_text(
        self,
        texts: list[str],
        model: str,
    ) -> list[list[float]]:
        """Embed texts; the SDK call is synchronous so it runs in a thread."""
        if not texts:
            return []

        def _embed_sync() -> list[list[float]]:
            result = genai.embed_content(
                model=model,
                content=texts,
                task_type="retrieval_document",
            )
            return result["embedding"]

        try:
            embeddings = await asyncio.to_thread(_embed_sync)
        except Exception as e:
            logger.error(f"Embedding failed: {e}")
            raise _translate(e, "embedding") from e

        logger.debug(f"Embedded {len(embeddings)} texts with {model}")
        return embeddings
