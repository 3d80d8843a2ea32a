"""
Episodic Tier

Recent conversation turns.
"""
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...models.conversation import Message


class EpisodicTier:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def query(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        """Last `limit` messages, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            )
            messages = list(result.scalars())

        return [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "created_at": m.created_at.isoformat(),
            }
            for m in reversed(messages)
        ]

    async def store(self, conversation_id: str, role: str, content: str) -> Message:
        async with self._session_factory() as session:
            message = Message(conversation_id=conversation_id, role=role, content=content)
            session.add(message)
            await session.commit()
        return message
