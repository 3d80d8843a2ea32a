"""
Graph Consistency Engine

Duplicate detection, merge, split and bulk actions over the entity graph.

Merge and split run as one unit of work each. Both endpoints of every
touched edge are rewritten inside that transaction, so either the whole
restructuring is visible or none of it is. The optimistic-lock version on
EntityDefinition turns a concurrent merge/split of the same entity into
a ConflictError instead of a silent lost update.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import unit_of_work
from ..errors import ValidationError
from ..models.entity import EntityDefinition, EntityRelationship, MessageEntity
from .similarity import similarity
from .store import ALL_NAMESPACES, EntityStore, merge_unique

logger = logging.getLogger(__name__)

DELETE_EDGE = "DELETE"

BULK_ACTIONS = ("delete", "change_type", "add_tags")


@dataclass
class DuplicatePair:
    """Two entities whose names look alike. A candidate, never acted on."""
    entity1: EntityDefinition
    entity2: EntityDefinition
    similarity: float


@dataclass
class BulkActionResult:
    action: str
    affected: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


class ConsistencyEngine:
    """
    Restructures the graph while keeping edges and message links intact.

    Owns its transactions: each public mutation commits or rolls back.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = EntityStore(session)

    # =========================================================================
    # Duplicates
    # =========================================================================

    async def find_duplicates(
        self,
        *,
        namespace=ALL_NAMESPACES,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        same_namespace: bool = False,
    ) -> List[DuplicatePair]:
        """
        Candidate pairs whose names score strictly above the threshold,
        ordered by score descending, then by ids.

        Every pair of the selected entities is scored, across namespaces
        too. `same_namespace` restricts pairs to entities sharing one.
        """
        threshold = settings.duplicate_similarity_threshold if threshold is None else threshold
        limit = settings.duplicate_candidate_limit if limit is None else limit

        entities = await self.store.list(namespace=namespace)
        entities.sort(key=lambda e: e.id)

        pairs = []
        for i, first in enumerate(entities):
            for second in entities[i + 1:]:
                if same_namespace and first.namespace != second.namespace:
                    continue
                score = similarity(first.name, second.name)
                if score > threshold:
                    pairs.append(DuplicatePair(first, second, round(score, 6)))

        pairs.sort(key=lambda p: (-p.similarity, p.entity1.id, p.entity2.id))
        logger.debug(f"Duplicate scan: {len(entities)} entities, {len(pairs)} candidate pairs")
        return pairs[:limit]

    # =========================================================================
    # Merge
    # =========================================================================

    async def _repoint_edge(
        self,
        edge: EntityRelationship,
        old_id: str,
        new_id: str,
        drop_self_loops: bool,
    ) -> bool:
        """
        Move every `old_id` endpoint of an edge to `new_id`.

        Deletes the edge instead when the result already exists (or is a
        self-loop and `drop_self_loops` is set). Returns True if kept.
        """
        new_source = new_id if edge.source_entity_id == old_id else edge.source_entity_id
        new_target = new_id if edge.target_entity_id == old_id else edge.target_entity_id

        if drop_self_loops and new_source == new_target:
            await self.session.delete(edge)
            await self.session.flush()
            return False

        clash = await self.store.find_edge(new_source, new_target, edge.predicate_id)
        if clash is not None and clash.id != edge.id:
            await self.session.delete(edge)
            await self.session.flush()
            return False

        edge.source_entity_id = new_source
        edge.target_entity_id = new_target
        await self.session.flush()
        return True

    async def merge(self, target_id: str, source_id: str) -> EntityDefinition:
        """
        Fold `source` into `target` and delete `source`.

        Args:
            target_id: Entity that survives
            source_id: Entity that is absorbed

        Returns:
            The updated target entity
        """
        if target_id == source_id:
            raise ValidationError("Cannot merge an entity into itself")

        async with unit_of_work(self.session):
            target = await self.store.get(target_id)
            source = await self.store.get(source_id)

            target.aliases = merge_unique(
                target.aliases, source.aliases, [source.name], exclude=[target.name]
            )
            target.last_updated_at = datetime.utcnow()
            await self.session.flush()

            kept = dropped = 0
            for edge in await self.store.edges_for(source_id):
                if await self._repoint_edge(edge, source_id, target_id, drop_self_loops=True):
                    kept += 1
                else:
                    dropped += 1

            # Links the target already has would violate the primary key
            await self.session.execute(
                delete(MessageEntity)
                .where(
                    MessageEntity.entity_id == source_id,
                    MessageEntity.message_id.in_(
                        select(MessageEntity.message_id).where(MessageEntity.entity_id == target_id)
                    ),
                )
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(MessageEntity)
                .where(MessageEntity.entity_id == source_id)
                .values(entity_id=target_id)
                .execution_options(synchronize_session=False)
            )

            await self.session.delete(source)
            await self.session.flush()

        logger.info(
            f"Merged entity {source_id} into {target_id} "
            f"({kept} edges re-pointed, {dropped} collapsed)"
        )
        return target

    # =========================================================================
    # Split
    # =========================================================================

    def _check_split_request(
        self,
        source: EntityDefinition,
        new_entities: List[Dict[str, Any]],
        migrations: List[Dict[str, Any]],
        edge_ids: List[str],
    ) -> None:
        problems = []

        if len(new_entities) < 2:
            problems.append("A split needs at least two new entities")

        temp_ids = set()
        identities = set()
        for i, spec in enumerate(new_entities):
            name = (spec.get("name") or "").strip()
            entity_type = (spec.get("type") or "").strip()
            temp_id = spec.get("temp_id")
            if not name or not entity_type:
                problems.append(f"New entity {i} needs a name and a type")
                continue
            if not temp_id:
                problems.append(f"New entity {i} needs an id")
            elif temp_id in temp_ids:
                problems.append(f"Duplicate new entity id '{temp_id}'")
            temp_ids.add(temp_id)
            if (name, entity_type) in identities:
                problems.append(f"New entity '{name}' ({entity_type}) is listed twice")
            identities.add((name, entity_type))
            if (name, entity_type) == (source.name, source.type):
                problems.append(f"New entity '{name}' ({entity_type}) is identical to the source")

        decided = set()
        for migration in migrations:
            edge_id = migration.get("relationship_id")
            if edge_id not in edge_ids:
                problems.append(f"Relationship {edge_id} does not belong to entity {source.id}")
            elif edge_id in decided:
                problems.append(f"Relationship {edge_id} has more than one migration")
            decided.add(edge_id)

        undecided = [edge_id for edge_id in edge_ids if edge_id not in decided]
        if undecided:
            problems.append(f"No migration given for relationship(s): {', '.join(undecided)}")

        if problems:
            raise ValidationError("; ".join(problems), problems)

    async def split(
        self,
        source_id: str,
        new_entities: List[Dict[str, Any]],
        migrations: List[Dict[str, Any]],
    ) -> Dict[str, EntityDefinition]:
        """
        Replace one entity with several and redistribute its edges.

        Args:
            source_id: Entity to split; deleted at the end
            new_entities: dicts with temp_id, name, type, description
            migrations: dicts with relationship_id and new_owner_entity_id
                (a temp id, or "DELETE")

        Returns:
            Created entities keyed by temp id
        """
        async with unit_of_work(self.session):
            source = await self.store.get(source_id)
            edges = {edge.id: edge for edge in await self.store.edges_for(source_id)}
            self._check_split_request(source, new_entities, migrations, list(edges))

            created: Dict[str, EntityDefinition] = {}
            for spec in new_entities:
                entity, _ = await self.store.create(
                    {
                        "name": spec["name"],
                        "type": spec["type"],
                        "description": spec.get("description"),
                    },
                    namespace=source.namespace,
                )
                created[spec["temp_id"]] = entity

            for migration in migrations:
                edge = edges[migration["relationship_id"]]
                owner = migration["new_owner_entity_id"]
                if owner == DELETE_EDGE:
                    await self.session.delete(edge)
                    await self.session.flush()
                elif owner in created:
                    await self._repoint_edge(
                        edge, source_id, created[owner].id, drop_self_loops=False
                    )
                # Any other owner leaves the edge on the source; it cascades below

            await self.session.delete(source)
            await self.session.flush()

        logger.info(f"Split entity {source_id} into {len(created)} entities")
        return created

    # =========================================================================
    # Bulk actions
    # =========================================================================

    async def bulk_action(
        self,
        action: str,
        ids: List[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> BulkActionResult:
        """Apply delete / change_type / add_tags to many entities at once."""
        payload = payload or {}
        if action not in BULK_ACTIONS:
            raise ValidationError(f"Unknown bulk action '{action}'")

        new_type = None
        tags: List[str] = []
        if action == "change_type":
            new_type = payload.get("newType")
            if not isinstance(new_type, str) or not new_type.strip():
                raise ValidationError("change_type needs payload.newType")
        elif action == "add_tags":
            tags = payload.get("tags")
            if not isinstance(tags, list) or not tags or not all(isinstance(t, str) for t in tags):
                raise ValidationError("add_tags needs a non-empty payload.tags list")

        unique_ids = list(dict.fromkeys(ids))
        result = BulkActionResult(action=action)

        async with unit_of_work(self.session):
            found = await self.store.get_many(unique_ids)
            for entity_id in unique_ids:
                entity = found.get(entity_id)
                if entity is None:
                    result.missing.append(entity_id)
                    continue
                if action == "delete":
                    await self.session.delete(entity)
                    await self.session.flush()
                elif action == "change_type":
                    await self.store.update(entity_id, {"type": new_type})
                else:
                    await self.store.update(entity_id, {"tags": merge_unique(entity.tags, tags)})
                result.affected.append(entity_id)

        logger.info(f"Bulk {action}: {len(result.affected)} affected, {len(result.missing)} missing")
        return result
