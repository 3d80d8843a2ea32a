"""
Document Tier

Raw source text handed to memory extraction, kept for provenance.
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...models.knowledge import SourceDocument


class DocumentTier:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def store(
        self,
        text: str,
        source: str,
        *,
        message_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> str:
        async with self._session_factory() as session:
            document = SourceDocument(
                text=text,
                source=source,
                message_id=message_id,
                conversation_id=conversation_id,
                namespace=namespace,
            )
            session.add(document)
            await session.commit()
        return document.id

    async def for_message(self, message_id: str) -> List[SourceDocument]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SourceDocument)
                .where(SourceDocument.message_id == message_id)
                .order_by(SourceDocument.created_at)
            )
            return list(result.scalars())
