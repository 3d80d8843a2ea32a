"""Shared fixtures: a throwaway SQLite database per test and a scripted LLM."""
import json
import re
import zlib
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cognimem.config import settings
from cognimem.database import create_engine_for, get_session_factory, init_db
from cognimem.jobs import JobQueue, get_job_queue
from cognimem.llm import LLMProvider, get_llm_provider
from cognimem.llm.base import LLMError
from cognimem.models.conversation import Conversation, Message

EMBEDDING_DIMS = 256
_TOKEN = re.compile(r"[a-z0-9]+")


class FakeLLM(LLMProvider):
    """
    Deterministic provider.

    Extraction prompts get `extraction`, link prediction prompts get
    `predicate`, anything else gets `reply`. Embeddings are hashed
    bag-of-words vectors, so texts sharing words score higher.
    """

    def __init__(self):
        self.extraction: Dict[str, Any] = {"entities": [], "knowledge": [], "relationships": []}
        self.predicate = "collaborates_with"
        self.reply = "Noted."
        self.failures_left = 0
        self.embed_error: Optional[Exception] = None
        # text -> number of times embedding it fails before it succeeds
        self.embed_failures: Dict[str, int] = {}
        self.prompts: List[str] = []

    async def generate_text(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
    ) -> str:
        self.prompts.append(prompt)
        if self.failures_left > 0:
            self.failures_left -= 1
            raise LLMError("model unavailable")
        if "extract memories" in prompt:
            return json.dumps(self.extraction)
        if "Suggest a predicate for" in prompt:
            return json.dumps({"predicate": self.predicate})
        return self.reply

    async def embed_text(self, texts: list[str], model: str) -> list[list[float]]:
        if self.embed_error is not None:
            raise self.embed_error
        for text in texts:
            if self.embed_failures.get(text, 0) > 0:
                self.embed_failures[text] -= 1
                raise LLMError(f"embedding failed for {text!r}")
        vectors = []
        for text in texts:
            vector = [0.0] * EMBEDDING_DIMS
            for token in _TOKEN.findall(text.lower()):
                vector[zlib.crc32(token.encode()) % EMBEDDING_DIMS] += 1.0
            vectors.append(vector)
        return vectors


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'cognimem-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
async def job_queue():
    queue = JobQueue(workers=1, maxsize=10, max_attempts=2, backoff_max=0.01)
    await queue.start()
    yield queue
    await queue.stop()


@pytest.fixture
async def client(session_factory, llm, job_queue):
    """HTTP client against the app, wired to the test database and fakes."""
    from cognimem.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_llm_provider] = lambda: llm
    app.dependency_overrides[get_job_queue] = lambda: job_queue
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_conversation(session_factory):
    """Create a conversation with the given (role, content) messages."""

    async def _make(*turns, namespace=None):
        async with session_factory() as session:
            conversation = Conversation(title="test", namespace=namespace)
            session.add(conversation)
            await session.flush()
            messages = []
            for role, content in turns:
                message = Message(conversation_id=conversation.id, role=role, content=content)
                session.add(message)
                await session.flush()
                messages.append(message)
            await session.commit()
        return conversation, messages

    return _make


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "job_backoff_max", 0.01)
