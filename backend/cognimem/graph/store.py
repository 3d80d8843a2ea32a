"""
Entity & Relationship Store

Persistence for entities, predicates, edges, message links and
validation rules. The store flushes but never commits: callers wrap
multi-step writes in `unit_of_work`.

Identity rules:
- An entity is unique by (name, type, namespace); creating an existing
  identity upserts it (description replaced, aliases/tags unioned).
- An edge is unique by (source, target, predicate); creating it twice
  is a no-op that returns the existing row.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.entity import (
    EntityDefinition,
    EntityRelationship,
    EntityTypeValidationRule,
    MessageEntity,
    PredicateDefinition,
    VerificationStatus,
)
from .namespace import ALL_NAMESPACES, namespace_clause
from .validation import check_rule_definitions, validate_entity

logger = logging.getLogger(__name__)


_UPDATABLE_FIELDS = ("name", "type", "description", "aliases", "tags")


def merge_unique(*lists: Iterable[str], exclude: Iterable[str] = ()) -> List[str]:
    """Concatenate lists, dropping blanks, repeats and excluded values; order is kept."""
    seen = set(exclude)
    merged = []
    for items in lists:
        for item in items or ():
            item = item.strip() if isinstance(item, str) else item
            if not item or item in seen:
                continue
            seen.add(item)
            merged.append(item)
    return merged


def _insert(session: AsyncSession, model):
    """INSERT supporting ON CONFLICT for the session's dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


class EntityStore:
    """Graph persistence over one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Entities
    # =========================================================================

    async def _find_identity(
        self,
        name: str,
        entity_type: str,
        namespace: Optional[str],
    ) -> Optional[EntityDefinition]:
        result = await self.session.execute(
            select(EntityDefinition).where(
                EntityDefinition.name == name,
                EntityDefinition.type == entity_type,
                namespace_clause(EntityDefinition.namespace, namespace),
            )
        )
        return result.scalar_one_or_none()

    async def _absorb(
        self,
        entity: EntityDefinition,
        description: Optional[str],
        aliases: List[str],
        tags: List[str],
    ) -> EntityDefinition:
        """Fold a repeated create into the existing row."""
        merged = {
            "name": entity.name,
            "type": entity.type,
            "description": description or entity.description,
            "aliases": merge_unique(entity.aliases, aliases),
            "tags": merge_unique(entity.tags, tags),
        }
        await validate_entity(
            self.session, merged, namespace=entity.namespace, entity_id=entity.id
        )

        entity.description = merged["description"]
        entity.aliases = merged["aliases"]
        entity.tags = merged["tags"]
        # Always emit the UPDATE so version and timestamp move
        entity.last_updated_at = datetime.utcnow()
        await self.session.flush()
        return entity

    async def create(
        self,
        data: Dict[str, Any],
        *,
        namespace: Optional[str],
    ) -> Tuple[EntityDefinition, bool]:
        """
        Create an entity, or upsert the existing one with the same identity.

        Args:
            data: name, type and optionally description, aliases, tags
            namespace: owning namespace, None for global

        Returns:
            (entity, created) where created is False for an upsert
        """
        name = (data.get("name") or "").strip()
        entity_type = (data.get("type") or "").strip()
        missing = [field for field, value in (("name", name), ("type", entity_type)) if not value]
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}",
                [f"{field} is required" for field in missing],
            )

        description = (data.get("description") or "").strip() or None
        aliases = merge_unique(data.get("aliases") or [])
        tags = merge_unique(data.get("tags") or [])

        existing = await self._find_identity(name, entity_type, namespace)
        if existing is not None:
            logger.debug(f"Upserting existing entity {existing.id} ({name}/{entity_type})")
            return await self._absorb(existing, description, aliases, tags), False

        await validate_entity(
            self.session,
            {
                "name": name,
                "type": entity_type,
                "description": description,
                "aliases": aliases,
                "tags": tags,
            },
            namespace=namespace,
        )

        entity_id = str(uuid.uuid4())
        now = datetime.utcnow()
        stmt = _insert(self.session, EntityDefinition).values(
            id=entity_id,
            name=name,
            type=entity_type,
            description=description,
            aliases=aliases,
            tags=tags,
            namespace=namespace,
            access_count=0,
            version=1,
            created_at=now,
            last_updated_at=now,
        ).on_conflict_do_nothing()
        result = await self.session.execute(stmt)

        if result.rowcount:
            entity = await self.session.get(EntityDefinition, entity_id)
            logger.info(f"Created entity {entity_id} ({name}/{entity_type})")
            return entity, True

        # A concurrent writer inserted the same identity first
        existing = await self._find_identity(name, entity_type, namespace)
        if existing is None:
            raise ConflictError(f"Could not create or find entity {name}/{entity_type}")
        return await self._absorb(existing, description, aliases, tags), False

    async def get(self, entity_id: str) -> EntityDefinition:
        """Load one entity or raise NotFoundError."""
        entity = await self.session.get(EntityDefinition, entity_id)
        if entity is None:
            raise NotFoundError("Entity", entity_id)
        return entity

    async def get_many(self, entity_ids: Iterable[str]) -> Dict[str, EntityDefinition]:
        ids = list(entity_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(EntityDefinition).where(EntityDefinition.id.in_(ids))
        )
        return {entity.id: entity for entity in result.scalars()}

    async def list(
        self,
        *,
        namespace,
        entity_type: Optional[str] = None,
    ) -> List[EntityDefinition]:
        stmt = select(EntityDefinition).where(
            namespace_clause(EntityDefinition.namespace, namespace)
        )
        if entity_type:
            stmt = stmt.where(EntityDefinition.type == entity_type)
        result = await self.session.execute(
            stmt.order_by(EntityDefinition.name, EntityDefinition.type)
        )
        return list(result.scalars())

    async def find_by_name(self, name: str, *, namespace) -> List[EntityDefinition]:
        """Exact-name lookup; one name may exist under several types."""
        result = await self.session.execute(
            select(EntityDefinition).where(
                EntityDefinition.name == name,
                namespace_clause(EntityDefinition.namespace, namespace),
            ).order_by(EntityDefinition.created_at)
        )
        return list(result.scalars())

    async def update(self, entity_id: str, fields: Dict[str, Any]) -> EntityDefinition:
        """
        Apply a partial update.

        None leaves name, type, aliases and tags unchanged; a None
        description clears it. Renames that collide with another
        entity's identity raise ConflictError.
        """
        entity = await self.get(entity_id)
        changes = {
            key: value for key, value in fields.items()
            if key in _UPDATABLE_FIELDS and (value is not None or key == "description")
        }

        new_name = (changes.get("name") or entity.name).strip()
        new_type = (changes.get("type") or entity.type).strip()
        new_data = {
            "name": new_name,
            "type": new_type,
            "description": changes["description"] if "description" in changes else entity.description,
            "aliases": merge_unique(changes["aliases"]) if "aliases" in changes else list(entity.aliases),
            "tags": merge_unique(changes["tags"]) if "tags" in changes else list(entity.tags),
        }

        if new_name != entity.name or new_type != entity.type:
            clash = await self._find_identity(new_name, new_type, entity.namespace)
            if clash is not None and clash.id != entity.id:
                raise ConflictError(
                    f"An entity named '{new_name}' of type '{new_type}' already exists"
                )
            await validate_entity(
                self.session, new_data, namespace=entity.namespace, entity_id=entity.id
            )

        entity.name = new_data["name"]
        entity.type = new_data["type"]
        entity.description = new_data["description"]
        entity.aliases = new_data["aliases"]
        entity.tags = new_data["tags"]
        entity.last_updated_at = datetime.utcnow()
        await self.session.flush()
        return entity

    async def delete(self, entity_id: str) -> None:
        """Delete an entity; its edges and message links cascade."""
        entity = await self.get(entity_id)
        await self.session.delete(entity)
        await self.session.flush()
        logger.info(f"Deleted entity {entity_id}")

    async def increment_access(self, entity_ids: Iterable[str]) -> None:
        """Count a read; does not touch the optimistic-lock version."""
        ids = list(entity_ids)
        if not ids:
            return
        await self.session.execute(
            update(EntityDefinition)
            .where(EntityDefinition.id.in_(ids))
            .values(access_count=EntityDefinition.access_count + 1)
            .execution_options(synchronize_session=False)
        )

    # =========================================================================
    # Predicates
    # =========================================================================

    async def upsert_predicate(
        self,
        name: str,
        description: Optional[str] = None,
        *,
        is_transitive: Optional[bool] = None,
        is_symmetric: Optional[bool] = None,
    ) -> Tuple[PredicateDefinition, bool]:
        """Find or create a predicate by name; supplied attributes are applied."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Predicate name is required")

        stmt = _insert(self.session, PredicateDefinition).values(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            is_transitive=bool(is_transitive),
            is_symmetric=bool(is_symmetric),
            created_at=datetime.utcnow(),
        ).on_conflict_do_nothing()
        result = await self.session.execute(stmt)
        created = bool(result.rowcount)

        predicate = (await self.session.execute(
            select(PredicateDefinition).where(PredicateDefinition.name == name)
        )).scalar_one()

        if not created:
            if description:
                predicate.description = description
            if is_transitive is not None:
                predicate.is_transitive = is_transitive
            if is_symmetric is not None:
                predicate.is_symmetric = is_symmetric
            await self.session.flush()

        return predicate, created

    async def get_predicate(self, predicate_id: str) -> PredicateDefinition:
        predicate = await self.session.get(PredicateDefinition, predicate_id)
        if predicate is None:
            raise NotFoundError("Predicate", predicate_id)
        return predicate

    async def list_predicates(self) -> List[PredicateDefinition]:
        result = await self.session.execute(
            select(PredicateDefinition).order_by(PredicateDefinition.name)
        )
        return list(result.scalars())

    async def update_predicate(self, predicate_id: str, fields: Dict[str, Any]) -> PredicateDefinition:
        predicate = await self.get_predicate(predicate_id)

        new_name = (fields.get("name") or predicate.name).strip()
        if new_name != predicate.name:
            clash = (await self.session.execute(
                select(PredicateDefinition).where(PredicateDefinition.name == new_name)
            )).scalar_one_or_none()
            if clash is not None:
                raise ConflictError(f"Predicate '{new_name}' already exists")
            predicate.name = new_name

        if "description" in fields:
            predicate.description = fields["description"]
        for flag in ("is_transitive", "is_symmetric"):
            if fields.get(flag) is not None:
                setattr(predicate, flag, fields[flag])

        await self.session.flush()
        return predicate

    async def delete_predicate(self, predicate_id: str) -> None:
        """Delete a predicate; every edge using it cascades."""
        predicate = await self.get_predicate(predicate_id)
        await self.session.delete(predicate)
        await self.session.flush()

    # =========================================================================
    # Edges
    # =========================================================================

    async def find_edge(
        self,
        source_id: str,
        target_id: str,
        predicate_id: str,
    ) -> Optional[EntityRelationship]:
        result = await self.session.execute(
            select(EntityRelationship).where(
                EntityRelationship.source_entity_id == source_id,
                EntityRelationship.target_entity_id == target_id,
                EntityRelationship.predicate_id == predicate_id,
            )
        )
        return result.scalar_one_or_none()

    async def create_edge(
        self,
        source_id: str,
        predicate_name: str,
        target_id: str,
        context: Optional[str] = None,
    ) -> Tuple[EntityRelationship, bool]:
        """
        Connect two existing entities.

        Returns:
            (edge, created); a repeated triple returns the existing edge
        """
        await self.get(source_id)
        await self.get(target_id)
        predicate, _ = await self.upsert_predicate(predicate_name)

        stmt = _insert(self.session, EntityRelationship).values(
            id=str(uuid.uuid4()),
            source_entity_id=source_id,
            target_entity_id=target_id,
            predicate_id=predicate.id,
            context=context,
            verification_status=VerificationStatus.UNVERIFIED,
            created_at=datetime.utcnow(),
        ).on_conflict_do_nothing()
        result = await self.session.execute(stmt)
        created = bool(result.rowcount)

        edge = await self.find_edge(source_id, target_id, predicate.id)
        if created:
            logger.info(f"Created edge {source_id} -{predicate.name}-> {target_id}")
        return edge, created

    async def get_edge(self, edge_id: str) -> EntityRelationship:
        edge = await self.session.get(EntityRelationship, edge_id)
        if edge is None:
            raise NotFoundError("Relationship", edge_id)
        return edge

    async def delete_edge(self, edge_id: str) -> None:
        edge = await self.get_edge(edge_id)
        await self.session.delete(edge)
        await self.session.flush()

    async def update_edge_predicate(self, edge_id: str, predicate_name: str) -> EntityRelationship:
        """
        Relabel an edge.

        If the relabeled triple already exists, this edge is removed and
        the existing one is returned.
        """
        edge = await self.get_edge(edge_id)
        predicate, _ = await self.upsert_predicate(predicate_name)
        if predicate.id == edge.predicate_id:
            return edge

        existing = await self.find_edge(edge.source_entity_id, edge.target_entity_id, predicate.id)
        if existing is not None:
            await self.session.delete(edge)
            await self.session.flush()
            return existing

        edge.predicate = predicate
        await self.session.flush()
        return edge

    async def set_edge_verification(
        self,
        edge_id: str,
        status: VerificationStatus,
    ) -> EntityRelationship:
        edge = await self.get_edge(edge_id)
        edge.verification_status = VerificationStatus(status)
        edge.last_verified_at = datetime.utcnow()
        await self.session.flush()
        return edge

    async def list_edges(self, *, namespace=ALL_NAMESPACES) -> List[EntityRelationship]:
        """All edges, or those whose source entity is in the namespace."""
        stmt = select(EntityRelationship)
        if namespace is not ALL_NAMESPACES:
            stmt = stmt.join(
                EntityDefinition,
                EntityDefinition.id == EntityRelationship.source_entity_id,
            ).where(namespace_clause(EntityDefinition.namespace, namespace))
        result = await self.session.execute(stmt.order_by(EntityRelationship.created_at))
        return list(result.scalars())

    async def edges_for(self, entity_id: str) -> List[EntityRelationship]:
        """Every edge with the entity at either end."""
        result = await self.session.execute(
            select(EntityRelationship).where(
                or_(
                    EntityRelationship.source_entity_id == entity_id,
                    EntityRelationship.target_entity_id == entity_id,
                )
            ).order_by(EntityRelationship.created_at)
        )
        return list(result.scalars())

    async def create_edge_from_names(
        self,
        source_name: str,
        predicate_name: str,
        target_name: str,
        *,
        namespace=ALL_NAMESPACES,
    ) -> Tuple[EntityRelationship, bool]:
        """
        Connect two entities addressed by name, as when accepting a
        link-prediction proposal. The oldest entity with a name wins.

        Raises:
            NotFoundError: if either name matches no entity
        """
        ids = []
        for name in (source_name, target_name):
            matches = await self.find_by_name(name.strip(), namespace=namespace)
            if not matches:
                raise NotFoundError("Entity", name)
            ids.append(matches[0].id)
        return await self.create_edge(ids[0], predicate_name, ids[1])

    async def list_unused(self, *, namespace=ALL_NAMESPACES) -> List[EntityDefinition]:
        """Entities with no edge at either end and no message link, oldest first."""
        result = await self.session.execute(
            select(EntityDefinition).where(
                namespace_clause(EntityDefinition.namespace, namespace),
                EntityDefinition.id.not_in(select(EntityRelationship.source_entity_id)),
                EntityDefinition.id.not_in(select(EntityRelationship.target_entity_id)),
                EntityDefinition.id.not_in(select(MessageEntity.entity_id)),
            ).order_by(EntityDefinition.created_at, EntityDefinition.id)
        )
        return list(result.scalars())

    # =========================================================================
    # Message links
    # =========================================================================

    async def link_message(self, message_id: str, entity_id: str) -> bool:
        """Record that a message mentions an entity. Returns False if already linked."""
        stmt = _insert(self.session, MessageEntity).values(
            message_id=message_id,
            entity_id=entity_id,
            created_at=datetime.utcnow(),
        ).on_conflict_do_nothing()
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    # =========================================================================
    # Validation rules
    # =========================================================================

    async def upsert_rules(
        self,
        entity_type: str,
        rules: List[Dict[str, Any]],
    ) -> EntityTypeValidationRule:
        """Replace the rule set of an entity type."""
        check_rule_definitions(rules)

        result = await self.session.execute(
            select(EntityTypeValidationRule).where(
                EntityTypeValidationRule.entity_type == entity_type
            )
        )
        rule_set = result.scalar_one_or_none()
        if rule_set is None:
            rule_set = EntityTypeValidationRule(entity_type=entity_type, rules=list(rules))
            self.session.add(rule_set)
        else:
            rule_set.rules = list(rules)
            rule_set.last_updated_at = datetime.utcnow()

        await self.session.flush()
        return rule_set

    async def list_rules(self) -> List[EntityTypeValidationRule]:
        result = await self.session.execute(
            select(EntityTypeValidationRule).order_by(EntityTypeValidationRule.entity_type)
        )
        return list(result.scalars())

    async def delete_rules(self, entity_type: str) -> None:
        result = await self.session.execute(
            select(EntityTypeValidationRule).where(
                EntityTypeValidationRule.entity_type == entity_type
            )
        )
        rule_set = result.scalar_one_or_none()
        if rule_set is None:
            raise NotFoundError("Validation rules", entity_type)
        await self.session.delete(rule_set)
        await self.session.flush()
