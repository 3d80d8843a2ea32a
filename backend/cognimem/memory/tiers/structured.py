"""
Structured Tier

Entities and contacts the user's message refers to by name.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...graph.store import EntityStore
from ...models.knowledge import Contact
from .base import is_referenced, referenced_entities


class StructuredTier:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def query(
        self,
        user_query: str,
        mentioned: List[str],
        *,
        namespace: Optional[str],
    ) -> List[Dict[str, Any]]:
        """
        Referenced entities, then referenced contacts.

        Each returned entity has its access count incremented.
        """
        async with self._session_factory() as session:
            entities = await referenced_entities(
                session, user_query, mentioned, namespace=namespace
            )
            contacts = [
                contact for contact in (await session.execute(
                    select(Contact).order_by(Contact.name)
                )).scalars()
                if is_referenced([contact.name], user_query, mentioned)
            ]

            if entities:
                await EntityStore(session).increment_access(e.id for e in entities)
                await session.commit()

        items = [
            {
                "kind": "entity",
                "id": e.id,
                "name": e.name,
                "type": e.type,
                "description": e.description or "",
            }
            for e in entities
        ]
        items.extend(
            {
                "kind": "contact",
                "id": c.id,
                "name": c.name,
                "email": c.email,
                "company": c.company,
                "notes": c.notes,
            }
            for c in contacts
        )
        return items
