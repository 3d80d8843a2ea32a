"""
Knowledge Graph Models

Typed entities, a controlled vocabulary of predicates, and the
predicate-labeled edges between entities.
"""
from datetime import datetime
from sqlalchemy import (
    String, Text, DateTime, Integer, Boolean, JSON,
    ForeignKey, Enum as SQLEnum, Index, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import Optional, List
import enum
import uuid

from ..database import Base


class VerificationStatus(str, enum.Enum):
    """Whether a relationship has been checked against a source."""
    UNVERIFIED = "Unverified"
    VERIFIED = "Verified"
    REFUTED = "Refuted"


class EntityDefinition(Base):
    """
    A named, typed node in the knowledge graph.

    Identity is (name, type, namespace); a NULL namespace is the global
    namespace and participates in uniqueness like any other value.
    `version` is the optimistic-lock counter: every ORM update or delete
    checks it, so concurrent merges/splits of the same row fail cleanly.
    """
    __tablename__ = "entity_definitions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    aliases: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    # "Brain" the entity belongs to; NULL is the global namespace
    namespace: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        index=True
    )

    access_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<EntityDefinition(id={self.id}, name={self.name}, type={self.type})>"


Index(
    "uq_entity_identity",
    EntityDefinition.name,
    EntityDefinition.type,
    func.coalesce(EntityDefinition.namespace, ""),
    unique=True,
)


class PredicateDefinition(Base):
    """A controlled-vocabulary edge label shared by all entities."""
    __tablename__ = "predicate_definitions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_transitive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_symmetric: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<PredicateDefinition(name={self.name})>"


class EntityRelationship(Base):
    """
    A directed, predicate-labeled edge between two entities.

    (source, target, predicate) is unique; deleting either endpoint or the
    predicate removes the edge.
    """
    __tablename__ = "entity_relationships"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    source_entity_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("entity_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    target_entity_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("entity_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    predicate_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("predicate_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    verification_status: Mapped[VerificationStatus] = mapped_column(
        SQLEnum(VerificationStatus),
        default=VerificationStatus.UNVERIFIED,
        nullable=False
    )
    last_verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False
    )

    predicate: Mapped["PredicateDefinition"] = relationship(
        "PredicateDefinition",
        lazy="joined"
    )

    __table_args__ = (
        UniqueConstraint(
            "source_entity_id", "target_entity_id", "predicate_id",
            name="uq_relationship_triple"
        ),
    )

    def __repr__(self) -> str:
        return f"<EntityRelationship({self.source_entity_id} -{self.predicate_id}-> {self.target_entity_id})>"


class EntityTypeValidationRule(Base):
    """
    Per-type constraints evaluated before an entity is written.

    `rules` is a list of {field, rule, params, errorMessage} objects.
    """
    __tablename__ = "entity_type_validation_rules"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    rules: Mapped[List[dict]] = mapped_column(JSON, default=list, nullable=False)

    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<EntityTypeValidationRule(entity_type={self.entity_type})>"


class MessageEntity(Base):
    """A conversation message mentioning an entity."""
    __tablename__ = "message_entities"

    message_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True
    )
    entity_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("entity_definitions.id", ondelete="CASCADE"),
        primary_key=True,
        index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<MessageEntity(message={self.message_id}, entity={self.entity_id})>"
