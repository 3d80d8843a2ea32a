"""
Memory Schemas

Structured LLM output for extraction and link prediction,
plus the memory pipeline API bodies.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .base import CamelModel, RequestModel


class ExtractedEntity(BaseModel):
    """Entity as reported by the model."""
    name: str
    type: str
    description: Optional[str] = ""


class ExtractedRelationship(BaseModel):
    """Relationship between two extracted entity names."""
    source: str
    predicate: str
    target: str


class ExtractionResult(BaseModel):
    """Fixed output shape of the extraction prompt."""
    entities: List[ExtractedEntity] = []
    knowledge: List[str] = []
    relationships: List[ExtractedRelationship] = []


class PredicateSuggestion(BaseModel):
    """Output of the link prediction prompt."""
    predicate: str = Field(..., min_length=1)


class EntityRef(CamelModel):
    id: str
    name: str


class LinkPredictionProposal(CamelModel):
    """A suggested, unsaved relationship."""
    source_entity: EntityRef
    target_entity: EntityRef
    suggested_predicate: str


class MemoryPipelineRequest(RequestModel):
    """Request to extract memories from an exchange in the background."""
    text_to_analyze: str = Field(..., min_length=1)
    ai_message_id: str
    conversation_id: Optional[str] = None
    namespace: Optional[str] = None


class MemoryPipelineAccepted(CamelModel):
    status: str = "accepted"
    message_id: str


class ContextRequest(RequestModel):
    """Inputs of one context assembly."""
    conversation_id: str
    user_query: str
    mentioned_entities: List[str] = []
    message_id: str
    run_id: Optional[str] = None
    namespace: Optional[str] = None


class TierResultResponse(CamelModel):
    status: str
    payload: Any = None
    error: Optional[str] = None


class ContextResponse(CamelModel):
    """Assembled context with the per-tier outcome."""
    run_id: str
    context: str
    tiers: Dict[str, TierResultResponse]
