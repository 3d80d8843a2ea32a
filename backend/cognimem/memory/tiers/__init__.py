# Memory tiers queried during context assembly
from .base import TierStatus, TierResult, run_tier
from .episodic import EpisodicTier
from .semantic import VectorIndex, VectorMatch, SqlVectorIndex, SemanticTier, build_vector_index
from .structured import StructuredTier
from .graph import GraphTier
from .document import DocumentTier

__all__ = [
    "TierStatus",
    "TierResult",
    "run_tier",
    "EpisodicTier",
    "VectorIndex",
    "VectorMatch",
    "SqlVectorIndex",
    "SemanticTier",
    "build_vector_index",
    "StructuredTier",
    "GraphTier",
    "DocumentTier",
]
