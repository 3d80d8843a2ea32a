"""
Link Prediction Pipeline

Proposes one missing relationship from co-mention evidence:
1. Look at the most recent messages of a conversation
2. Count entity pairs mentioned together in the same message
3. Drop pairs that already have an edge in either direction
4. Ask the model for a predicate for the strongest remaining pair

Never writes; the caller decides whether to create the edge.
"""
import logging
from collections import Counter
from itertools import combinations
from typing import Dict, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..graph.store import ALL_NAMESPACES, EntityStore
from ..llm import LLMProvider, get_model_for_task
from ..models.conversation import Message
from ..models.entity import EntityRelationship, MessageEntity
from ..prompts.link_prediction import LINK_PREDICTION_PROMPT, LINK_PREDICTION_SYSTEM
from ..schemas.memory import EntityRef, LinkPredictionProposal, PredicateSuggestion
from ..tracer import trace_step
from .extraction import to_snake_case

logger = logging.getLogger(__name__)


class LinkPredictionPipeline:
    def __init__(self, session_factory: async_sessionmaker, llm: LLMProvider):
        self._session_factory = session_factory
        self.llm = llm

    async def run(
        self,
        conversation_id: str,
        *,
        namespace=ALL_NAMESPACES,
    ) -> Optional[LinkPredictionProposal]:
        async with self._session_factory() as session:
            recent = (
                select(Message.id)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(settings.link_prediction_window)
                .scalar_subquery()
            )
            rows = (await session.execute(
                select(MessageEntity.message_id, MessageEntity.entity_id)
                .where(MessageEntity.message_id.in_(recent))
            )).all()

            mentions: Dict[str, Set[str]] = {}
            for message_id, entity_id in rows:
                mentions.setdefault(message_id, set()).add(entity_id)

            counts: Counter = Counter()
            for entity_ids in mentions.values():
                for pair in combinations(sorted(entity_ids), 2):
                    counts[pair] += 1

            candidates = {
                pair: count for pair, count in counts.items()
                if count >= settings.link_prediction_min_cooccurrence
            }
            if not candidates:
                return None

            involved = {entity_id for pair in candidates for entity_id in pair}
            entities = await EntityStore(session).get_many(involved)
            if namespace is not ALL_NAMESPACES:
                entities = {
                    entity_id: entity for entity_id, entity in entities.items()
                    if entity.namespace == namespace
                }

            linked = {
                frozenset((source, target))
                for source, target in (await session.execute(
                    select(EntityRelationship.source_entity_id, EntityRelationship.target_entity_id)
                    .where(
                        EntityRelationship.source_entity_id.in_(involved),
                        EntityRelationship.target_entity_id.in_(involved),
                    )
                )).all()
            }

        ranked = sorted(
            (
                (count, pair) for pair, count in candidates.items()
                if pair[0] in entities and pair[1] in entities
                and frozenset(pair) not in linked
            ),
            key=lambda item: (
                -item[0],
                entities[item[1][0]].name,
                entities[item[1][1]].name,
            ),
        )
        if not ranked:
            return None

        count, (source_id, target_id) = ranked[0]
        source, target = entities[source_id], entities[target_id]
        trace_step(
            "memory.link_prediction",
            f"{source.name} + {target.name} co-mentioned in {count} messages",
        )

        data = await self.llm.extract_json(
            prompt=LINK_PREDICTION_PROMPT.format(
                source_name=source.name,
                source_description=source.description or "none",
                target_name=target.name,
                target_description=target.description or "none",
            ),
            schema=PredicateSuggestion,
            model=get_model_for_task("link_prediction"),
            system_prompt=LINK_PREDICTION_SYSTEM,
        )
        predicate = to_snake_case(data["predicate"])
        if not predicate:
            return None

        logger.info(f"Link prediction: {source.name} -{predicate}-> {target.name}")
        return LinkPredictionProposal(
            source_entity=EntityRef(id=source.id, name=source.name),
            target_entity=EntityRef(id=target.id, name=target.name),
            suggested_predicate=predicate,
        )
