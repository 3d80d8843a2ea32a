"""
Semantic Tier

Free-text facts retrieved by embedding similarity.

The index sits behind the VectorIndex protocol. SqlVectorIndex keeps
embeddings as JSON rows and scores them with numpy; it is the default
for development and small deployments. Swap in a dedicated similarity
service by implementing the same three methods.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...config import settings
from ...errors import UpstreamError
from ...llm import LLMProvider, get_embedding_model
from ...models.knowledge import KnowledgeVector

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    id: str
    score: float
    payload: Dict[str, Any]


class VectorIndex(Protocol):
    async def upsert(self, id: str, embedding: List[float], payload: Dict[str, Any]) -> None: ...

    async def query(
        self,
        embedding: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]: ...

    async def delete(self, ids: List[str]) -> None: ...


def cosine_similarity(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against each row of a matrix."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms == 0, 0.0, dots / norms)
    return scores


class SqlVectorIndex:
    """VectorIndex over the knowledge_vectors table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def upsert(self, id: str, embedding: List[float], payload: Dict[str, Any]) -> None:
        async with self._session_factory() as session:
            row = await session.get(KnowledgeVector, id)
            if row is None:
                session.add(KnowledgeVector(
                    id=id,
                    text=payload.get("text", ""),
                    embedding=list(embedding),
                    payload=dict(payload),
                ))
            else:
                row.text = payload.get("text", row.text)
                row.embedding = list(embedding)
                row.payload = dict(payload)
            await session.commit()

    async def query(
        self,
        embedding: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        async with self._session_factory() as session:
            rows = list((await session.execute(select(KnowledgeVector))).scalars())

        if filter:
            rows = [
                row for row in rows
                if all(row.payload.get(key) == value for key, value in filter.items())
            ]
        # Vectors from another embedding model cannot be compared
        rows = [row for row in rows if len(row.embedding) == len(embedding)]
        if not rows or top_k <= 0:
            return []

        scores = cosine_similarity(
            np.asarray(embedding, dtype=float),
            np.asarray([row.embedding for row in rows], dtype=float),
        )
        ranked = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(id=rows[i].id, score=float(scores[i]), payload=rows[i].payload)
            for i in ranked
        ]

    async def delete(self, ids: List[str]) -> None:
        if not ids:
            return
        async with self._session_factory() as session:
            await session.execute(delete(KnowledgeVector).where(KnowledgeVector.id.in_(ids)))
            await session.commit()


def build_vector_index(session_factory: async_sessionmaker) -> VectorIndex:
    """Index selected by VECTOR_BACKEND."""
    if settings.vector_backend == "none":
        raise UpstreamError("vector tier not configured")
    return SqlVectorIndex(session_factory)


class SemanticTier:
    """
    Stores and retrieves facts by meaning.

    Every stored fact is independent; storing the same text twice keeps
    two entries.
    """

    def __init__(self, index: Optional[VectorIndex], llm: LLMProvider):
        self.index = index
        self.llm = llm

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker, llm: LLMProvider) -> "SemanticTier":
        try:
            index = build_vector_index(session_factory)
        except UpstreamError:
            logger.warning("Semantic tier disabled (VECTOR_BACKEND=none)")
            index = None
        return cls(index, llm)

    def require_index(self) -> VectorIndex:
        if self.index is None:
            raise UpstreamError("vector tier not configured")
        return self.index

    async def store(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        index = self.require_index()
        fact_id = str(uuid.uuid4())
        embedding = await self.llm.embed_one(text, model=get_embedding_model())
        await index.upsert(fact_id, embedding, {**(metadata or {}), "text": text})
        return fact_id

    async def query(
        self,
        text: str,
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Top matches as {id, text, score}, best first."""
        index = self.require_index()
        embedding = await self.llm.embed_one(text, model=get_embedding_model())
        matches = await index.query(embedding, top_k, filter)
        return [
            {"id": m.id, "text": m.payload.get("text", ""), "score": round(m.score, 4)}
            for m in matches
        ]
