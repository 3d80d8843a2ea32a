# LLM Providers
from .base import (
    LLMProvider,
    LLMError,
    LLMRateLimitError,
    LLMInvalidResponseError,
    LLMConfigurationError,
)
from .router import get_llm_provider, ModelTier, get_model_for_task, get_embedding_model

__all__ = [
    "LLMProvider",
    "LLMError",
    "LLMRateLimitError",
    "LLMInvalidResponseError",
    "LLMConfigurationError",
    "get_llm_provider",
    "ModelTier",
    "get_model_for_task",
    "get_embedding_model",
]
