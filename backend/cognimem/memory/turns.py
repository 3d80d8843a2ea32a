"""
Conversation Turns

One full exchange: store the user message, assemble memory context, ask
the model for a reply, store it, and hand the exchange to memory
extraction in the background.
"""
import logging
from dataclasses import dataclass
from typing import List

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..database import unit_of_work
from ..errors import NotFoundError
from ..graph.store import EntityStore
from ..jobs import JobQueue, QueueFullError
from ..llm import LLMProvider, get_model_for_task
from ..models.conversation import Conversation, Message
from ..prompts.response import RESPONSE_GENERATOR_PROMPT, RESPONSE_GENERATOR_SYSTEM
from ..tracer import trace_call, trace_result, trace_section
from .context_assembly import ContextAssemblyPipeline, ContextAssemblyRequest
from .extraction import MemoryExtractionPipeline

logger = logging.getLogger(__name__)


@dataclass
class TurnOutcome:
    user_message: Message
    assistant_message: Message
    context_run_id: str
    extraction_queued: bool


async def store_message(
    session_factory: async_sessionmaker,
    conversation_id: str,
    role: str,
    content: str,
    mentioned_entity_ids: List[str] = (),
) -> Message:
    """Append a message and link the entities it mentions."""
    async with session_factory() as session:
        async with unit_of_work(session):
            if await session.get(Conversation, conversation_id) is None:
                raise NotFoundError("Conversation", conversation_id)
            message = Message(conversation_id=conversation_id, role=role, content=content)
            session.add(message)
            await session.flush()

            store = EntityStore(session)
            for entity_id in dict.fromkeys(mentioned_entity_ids):
                await store.get(entity_id)
                await store.link_message(message.id, entity_id)
    return message


class ConversationTurnService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        llm: LLMProvider,
        job_queue: JobQueue,
    ):
        self._session_factory = session_factory
        self.llm = llm
        self.job_queue = job_queue
        self.context = ContextAssemblyPipeline(session_factory, llm)
        self.extraction = MemoryExtractionPipeline(session_factory, llm)

    def enqueue_extraction(
        self,
        text: str,
        message_id: str,
        conversation_id: str,
        namespace,
    ) -> bool:
        """Queue extraction for an exchange; False if the queue is full."""
        try:
            self.extraction.enqueue(
                self.job_queue, text, message_id, conversation_id, namespace=namespace
            )
        except QueueFullError as e:
            logger.warning(f"Memory extraction not queued for {message_id}: {e}")
            return False
        return True

    async def take_turn(
        self,
        conversation_id: str,
        content: str,
        mentioned_entity_ids: List[str] = (),
    ) -> TurnOutcome:
        trace_section("Conversation Turn")

        async with self._session_factory() as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFoundError("Conversation", conversation_id)
            namespace = conversation.namespace
            mentioned = await EntityStore(session).get_many(mentioned_entity_ids)

        user_message = await store_message(
            self._session_factory, conversation_id, "user", content, mentioned_entity_ids
        )

        assembled = await self.context.run(ContextAssemblyRequest(
            conversation_id=conversation_id,
            user_query=content,
            message_id=user_message.id,
            mentioned_entities=[entity.name for entity in mentioned.values()],
            namespace=namespace,
        ))

        model = get_model_for_task("conversation_reply")
        trace_call("memory.turns", "llm.generate_text", f"model={model}")
        reply = await self.llm.generate_text(
            prompt=RESPONSE_GENERATOR_PROMPT.format(
                memory_context=assembled.context or "(no stored memories)",
                message=content,
            ),
            model=model,
            system_prompt=RESPONSE_GENERATOR_SYSTEM,
        )
        trace_result("memory.turns", "llm.generate_text", True, reply)

        assistant_message = await store_message(
            self._session_factory, conversation_id, "assistant", reply
        )

        queued = self.enqueue_extraction(
            f"user: {content}\nassistant: {reply}",
            assistant_message.id,
            conversation_id,
            namespace,
        )

        return TurnOutcome(
            user_message=user_message,
            assistant_message=assistant_message,
            context_run_id=assembled.run_id,
            extraction_queued=queued,
        )
