"""
Conversations API

Endpoints for conversations, their messages, full turns and link prediction.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import get_db, get_session_factory, unit_of_work
from ..errors import NotFoundError
from ..jobs import JobQueue, get_job_queue
from ..llm import LLMProvider, get_llm_provider
from ..memory import ConversationTurnService, LinkPredictionPipeline, store_message
from ..models.conversation import Conversation, Message
from ..schemas.conversation import (
    ConversationCreate,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
    TurnRequest,
    TurnResponse,
)
from ..schemas.memory import LinkPredictionProposal

router = APIRouter(prefix="/conversations", tags=["conversations"])


async def _get_conversation(db: AsyncSession, conversation_id: str) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    return conversation


@router.post("", response_model=ConversationResponse, status_code=201)
async def create_conversation(
    data: ConversationCreate,
    db: AsyncSession = Depends(get_db),
):
    """Start a conversation, optionally scoped to a namespace."""
    conversation = Conversation(title=data.title, namespace=data.namespace)
    async with unit_of_work(db):
        db.add(conversation)
    return ConversationResponse.model_validate(conversation)


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Messages oldest first."""
    await _get_conversation(db, conversation_id)
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at, Message.id)
    )
    return [MessageResponse.model_validate(m) for m in result.scalars()]


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def add_message(
    conversation_id: str,
    data: MessageCreate,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Append a message without generating a reply."""
    message = await store_message(
        session_factory, conversation_id, data.role, data.content, data.mentioned_entity_ids
    )
    return MessageResponse.model_validate(message)


@router.post("/{conversation_id}/turn", response_model=TurnResponse)
async def take_turn(
    conversation_id: str,
    data: TurnRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: LLMProvider = Depends(get_llm_provider),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """
    One exchange: store the message, assemble context, reply, and queue
    memory extraction for the exchange.
    """
    service = ConversationTurnService(session_factory, llm, job_queue)
    outcome = await service.take_turn(conversation_id, data.content, data.mentioned_entity_ids)
    return TurnResponse(
        user_message=MessageResponse.model_validate(outcome.user_message),
        assistant_message=MessageResponse.model_validate(outcome.assistant_message),
        context_run_id=outcome.context_run_id,
        extraction_queued=outcome.extraction_queued,
    )


@router.get("/{conversation_id}/link-prediction", response_model=Optional[LinkPredictionProposal])
async def predict_link(
    conversation_id: str,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: LLMProvider = Depends(get_llm_provider),
    db: AsyncSession = Depends(get_db),
):
    """Suggest one missing relationship from recent co-mentions, or null."""
    conversation = await _get_conversation(db, conversation_id)
    pipeline = LinkPredictionPipeline(session_factory, llm)
    return await pipeline.run(conversation_id, namespace=conversation.namespace)
