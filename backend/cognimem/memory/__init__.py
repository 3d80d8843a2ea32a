# Memory pipelines
from .context_assembly import (
    ContextAssemblyPipeline,
    ContextAssemblyRequest,
    ContextAssemblyResult,
    compose_context,
)
from .extraction import MemoryExtractionPipeline, to_snake_case
from .link_prediction import LinkPredictionPipeline
from .turns import ConversationTurnService, TurnOutcome, store_message

__all__ = [
    "ContextAssemblyPipeline",
    "ContextAssemblyRequest",
    "ContextAssemblyResult",
    "compose_context",
    "MemoryExtractionPipeline",
    "to_snake_case",
    "LinkPredictionPipeline",
    "ConversationTurnService",
    "TurnOutcome",
    "store_message",
]
