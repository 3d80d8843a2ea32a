"""
Memory API

Endpoints for the memory pipelines: background extraction, extraction
preview over a conversation, and context assembly.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..database import get_session_factory
from ..jobs import JobQueue, get_job_queue
from ..llm import LLMProvider, get_llm_provider
from ..memory import (
    ContextAssemblyPipeline,
    ContextAssemblyRequest,
    MemoryExtractionPipeline,
)
from ..schemas.memory import (
    ContextRequest,
    ContextResponse,
    ExtractionResult,
    MemoryPipelineAccepted,
    MemoryPipelineRequest,
    TierResultResponse,
)

router = APIRouter(prefix="/memory", tags=["memory"])


@router.post("/pipeline", response_model=MemoryPipelineAccepted, status_code=202)
async def run_memory_pipeline(
    data: MemoryPipelineRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: LLMProvider = Depends(get_llm_provider),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """
    Queue memory extraction for an exchange.

    Answers immediately; progress and failures are visible through
    /inspect/{messageId}. A full queue is answered with 409.
    """
    MemoryExtractionPipeline(session_factory, llm).enqueue(
        job_queue,
        data.text_to_analyze,
        data.ai_message_id,
        data.conversation_id,
        namespace=data.namespace,
    )
    return MemoryPipelineAccepted(message_id=data.ai_message_id)


@router.get("/extract-from-conversation/{conversation_id}", response_model=ExtractionResult)
async def extract_from_conversation(
    conversation_id: str,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: LLMProvider = Depends(get_llm_provider),
):
    """Preview what extraction would find in a whole conversation. Nothing is written."""
    pipeline = MemoryExtractionPipeline(session_factory, llm)
    return await pipeline.preview_conversation(conversation_id)


@router.post("/context", response_model=ContextResponse)
async def assemble_context(
    data: ContextRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: LLMProvider = Depends(get_llm_provider),
):
    """Assemble the memory context for a user message."""
    pipeline = ContextAssemblyPipeline(session_factory, llm)
    result = await pipeline.run(ContextAssemblyRequest(
        conversation_id=data.conversation_id,
        user_query=data.user_query,
        message_id=data.message_id,
        mentioned_entities=data.mentioned_entities,
        run_id=data.run_id,
        namespace=data.namespace,
    ))
    return ContextResponse(
        run_id=result.run_id,
        context=result.context,
        tiers={
            tier: TierResultResponse(
                status=tier_result.status.value,
                payload=tier_result.payload,
                error=tier_result.error,
            )
            for tier, tier_result in result.tiers.items()
        },
    )
