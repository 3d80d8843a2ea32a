"""
LLM Provider Base Class

The interface every model provider implements, the LLM error family, and
structured-output parsing shared by extraction and link prediction.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional
import json
import logging

from pydantic import BaseModel, ValidationError

from ..errors import UpstreamError

logger = logging.getLogger(__name__)


class LLMError(UpstreamError):
    """Base exception for LLM errors."""
    pass


class LLMRateLimitError(LLMError):
    """Rate limit exceeded."""
    pass


class LLMInvalidResponseError(LLMError):
    """The model answered, but not with what was asked for."""
    pass


class LLMConfigurationError(LLMError):
    """Provider selected without the credentials it needs."""
    pass


def strip_code_fences(response: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    cleaned = response.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_structured(response: str, schema: type[BaseModel]) -> dict[str, Any]:
    """
    Parse a model response as JSON matching `schema`.

    Raises:
        LLMInvalidResponseError: not JSON, or JSON of the wrong shape
    """
    try:
        parsed = json.loads(strip_code_fences(response))
    except json.JSONDecodeError as e:
        raise LLMInvalidResponseError(f"Invalid JSON: {e}") from e
    try:
        return schema.model_validate(parsed).model_dump()
    except ValidationError as e:
        raise LLMInvalidResponseError(f"Schema validation failed: {e}") from e


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Pipelines only talk to this interface; the provider is picked by
    LLM_PROVIDER and can be swapped for a fake in tests.
    """

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Return the model's text completion for `prompt`."""
        pass

    @abstractmethod
    async def embed_text(
        self,
        texts: list[str],
        model: str,
    ) -> list[list[float]]:
        """Return one embedding vector per input text, in input order."""
        pass

    async def embed_one(self, text: str, model: str) -> list[float]:
        """Embed a single text."""
        embeddings = await self.embed_text([text], model=model)
        if len(embeddings) != 1:
            raise LLMInvalidResponseError(
                f"Expected 1 embedding, got {len(embeddings)}"
            )
        return embeddings[0]

    async def extract_json(
        self,
        prompt: str,
        schema: type[BaseModel],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        system_prompt: Optional[str] = None,
        max_retries: int = 2,
    ) -> dict[str, Any]:
        """
        Ask for JSON matching a Pydantic schema.

        An invalid answer is sent back to the model with the parse error
        and asked for again, up to `max_retries` attempts in total.
        Provider errors (rate limits, outages) propagate immediately; the
        job queue decides whether to retry those.

        Returns:
            Validated dictionary matching the schema
        """
        json_system = (system_prompt or "") + """

You must respond with valid JSON only. No markdown, no explanations.
The JSON must match this schema:
""" + json.dumps(schema.model_json_schema(), indent=2)

        request = prompt
        last_error: Optional[LLMInvalidResponseError] = None
        for attempt in range(1, max_retries + 1):
            response = await self.generate_text(
                prompt=request,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system_prompt=json_system,
            )
            try:
                return parse_structured(response, schema)
            except LLMInvalidResponseError as e:
                last_error = e
                logger.warning(f"Structured output rejected on attempt {attempt}: {e}")
                request = (
                    f"{prompt}\n\nYour previous answer was rejected ({e}). "
                    "Answer again with JSON only."
                )

        raise last_error or LLMInvalidResponseError("Failed to extract valid JSON")
