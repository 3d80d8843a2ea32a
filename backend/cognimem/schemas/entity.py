"""
Entity Schemas

Pydantic models for entity, relationship, predicate and
validation-rule API requests and responses.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import Field

from .base import CamelModel, RequestModel
from ..models.entity import VerificationStatus


class EntityCreate(RequestModel):
    """Request to create (or upsert) an entity."""
    name: str = Field(..., min_length=1, max_length=255)
    type: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    aliases: List[str] = []
    tags: List[str] = []
    namespace: Optional[str] = None


class EntityUpdate(RequestModel):
    """Partial update; omitted fields are left alone."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    aliases: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class EntityResponse(CamelModel):
    """Entity data returned from API."""
    id: str
    name: str
    type: str
    description: Optional[str] = None
    aliases: List[str] = []
    tags: List[str] = []
    namespace: Optional[str] = None
    access_count: int = 0
    version: int
    created_at: datetime
    last_updated_at: datetime


class MergeRequest(RequestModel):
    """Fold source into target."""
    target_id: str
    source_id: str


class SplitEntity(RequestModel):
    """An entity to create during a split, addressed by a caller-chosen id."""
    temp_id: str = Field(..., alias="id")
    name: str = Field(..., min_length=1, max_length=255)
    type: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class RelationshipMigration(RequestModel):
    """
    What happens to one edge of the split entity.

    new_owner_entity_id is a temp id from new_entities, or "DELETE".
    """
    relationship_id: str
    new_owner_entity_id: str


class SplitRequest(RequestModel):
    """Replace one entity with several."""
    source_entity_id: str
    new_entities: List[SplitEntity]
    relationship_migrations: List[RelationshipMigration] = []


class SplitResponse(CamelModel):
    """Created entities keyed by the temp ids the caller supplied."""
    created: Dict[str, EntityResponse]


class DuplicatePairResponse(CamelModel):
    """A candidate pair for merging."""
    entity1: EntityResponse
    entity2: EntityResponse
    similarity: float


class BulkActionRequest(RequestModel):
    """Apply one action to many entities."""
    action: Literal["delete", "change_type", "add_tags"]
    ids: List[str] = Field(..., min_length=1)
    payload: Dict[str, Any] = {}


class BulkActionResponse(CamelModel):
    """Result of a bulk action."""
    action: str
    affected: List[str]
    missing: List[str]


class RelationshipCreate(RequestModel):
    """Request to connect two entities."""
    source_entity_id: str
    target_entity_id: str
    predicate_name: str = Field(..., min_length=1, max_length=255)
    context: Optional[str] = None


class RelationshipFromNames(RequestModel):
    """Request to connect two entities by name."""
    source: str = Field(..., min_length=1)
    predicate: str = Field(..., min_length=1, max_length=255)
    target: str = Field(..., min_length=1)


class RelationshipUpdate(RequestModel):
    """Change an edge's predicate or verification status."""
    predicate_name: Optional[str] = Field(None, min_length=1, max_length=255)
    verification_status: Optional[VerificationStatus] = None


class RelationshipResponse(CamelModel):
    """Edge data returned from API."""
    id: str
    source_entity_id: str
    target_entity_id: str
    predicate_id: str
    predicate_name: str
    context: Optional[str] = None
    verification_status: VerificationStatus
    last_verified_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_edge(cls, edge) -> "RelationshipResponse":
        return cls(
            id=edge.id,
            source_entity_id=edge.source_entity_id,
            target_entity_id=edge.target_entity_id,
            predicate_id=edge.predicate_id,
            predicate_name=edge.predicate.name,
            context=edge.context,
            verification_status=edge.verification_status,
            last_verified_at=edge.last_verified_at,
            created_at=edge.created_at,
        )


class PredicateCreate(RequestModel):
    """Request to create (or upsert) a predicate."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_transitive: bool = False
    is_symmetric: bool = False


class PredicateUpdate(RequestModel):
    """Partial predicate update."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_transitive: Optional[bool] = None
    is_symmetric: Optional[bool] = None


class PredicateResponse(CamelModel):
    """Predicate data returned from API."""
    id: str
    name: str
    description: Optional[str] = None
    is_transitive: bool
    is_symmetric: bool
    created_at: datetime


class ValidationRuleSpec(CamelModel):
    """One constraint on one field of an entity type."""
    field: Literal["name", "description", "aliases", "tags"]
    rule: Literal[
        "required", "min_length", "max_length", "pattern",
        "allowed_values", "unique_across_types",
    ]
    params: Dict[str, Any] = {}
    error_message: Optional[str] = None


class ValidationRuleSet(RequestModel):
    """All rules for one entity type; replaces any existing set."""
    entity_type: str = Field(..., min_length=1, max_length=100)
    rules: List[ValidationRuleSpec]


class ValidationRuleResponse(CamelModel):
    """Stored rule set."""
    id: str
    entity_type: str
    rules: List[ValidationRuleSpec]
    last_updated_at: datetime
