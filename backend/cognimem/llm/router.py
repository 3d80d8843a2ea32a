"""
LLM Router

Model tier routing and provider factory.
Each pipeline names its task; the task decides the model tier.
"""
from enum import Enum
from typing import Optional
import logging

from .base import LLMProvider, LLMConfigurationError
from ..config import settings

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    """Model tiers based on cost and capability."""
    CHEAP = "cheap"   # Extraction, predicate suggestion
    MID = "mid"       # Conversation replies
    HEAVY = "heavy"   # Whole-conversation extraction


# Singleton provider instance
_provider_instance: Optional[LLMProvider] = None


def get_llm_provider() -> LLMProvider:
    """
    Get or create the LLM provider instance.

    Provider is selected based on the LLM_PROVIDER environment variable.
    Also used as a FastAPI dependency, so tests override it.
    """
    global _provider_instance

    if _provider_instance is None:
        settings.validate_provider_key()

        if settings.llm_provider == "openai":
            from .openai_provider import OpenAIProvider
            logger.info("Initializing OpenAI provider")
            _provider_instance = OpenAIProvider()
        elif settings.llm_provider == "gemini":
            from .gemini_provider import GeminiProvider
            logger.info("Initializing Gemini provider")
            _provider_instance = GeminiProvider()
        else:
            raise LLMConfigurationError(f"Unknown LLM provider: {settings.llm_provider}")

    return _provider_instance


def get_model_for_tier(tier: ModelTier) -> str:
    """Get the configured model name for a tier and the current provider."""
    return settings.get_model(tier.value)


def get_embedding_model() -> str:
    """Get the embedding model for the current provider."""
    return settings.get_embedding_model()


# Task to tier mapping
TASK_TIERS = {
    "memory_extraction": ModelTier.CHEAP,
    "link_prediction": ModelTier.CHEAP,
    "conversation_reply": ModelTier.MID,
    "conversation_extraction": ModelTier.HEAVY,
}


def get_tier_for_task(task: str) -> ModelTier:
    """Get the appropriate tier for a given task."""
    return TASK_TIERS.get(task, ModelTier.MID)


def get_model_for_task(task: str) -> str:
    """Get the model name for a given task."""
    return get_model_for_tier(get_tier_for_task(task))
