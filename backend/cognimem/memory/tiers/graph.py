"""
Graph Tier

Relationships touching the entities a message refers to, rendered as
plain sentences ("Alice works at Acme").
"""
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ...graph.store import EntityStore
from .base import referenced_entities


def render_edge(subject: str, predicate: str, obj: str) -> str:
    return f"{subject} {predicate.replace('_', ' ')} {obj}"


class GraphTier:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def query(
        self,
        user_query: str,
        mentioned: List[str],
        *,
        namespace: Optional[str],
    ) -> List[str]:
        async with self._session_factory() as session:
            store = EntityStore(session)
            anchors = await referenced_entities(
                session, user_query, mentioned, namespace=namespace
            )

            edges = {}
            for entity in anchors:
                for edge in await store.edges_for(entity.id):
                    edges.setdefault(edge.id, edge)

            ordered = sorted(edges.values(), key=lambda e: (e.created_at, e.id))
            names = {
                entity_id: entity.name
                for entity_id, entity in (await store.get_many(
                    {e.source_entity_id for e in ordered} | {e.target_entity_id for e in ordered}
                )).items()
            }

        return [
            render_edge(names[e.source_entity_id], e.predicate.name, names[e.target_entity_id])
            for e in ordered
            if e.source_entity_id in names and e.target_entity_id in names
        ]
