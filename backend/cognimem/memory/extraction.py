"""
Memory Extraction Pipeline

Turns an exchange into durable memory. Runs in the background job queue.

Steps (each traced on a MemoryExtraction run):
1. store_source_document - keep the raw text for provenance
2. llm_extraction - one structured call: entities, knowledge, relationships
3. upsert_entities - through the entity store; rule violations skip the entity
4. store_knowledge - every fact stored on its own in the semantic tier
5. create_relationships - names resolved to entities, predicates snake_cased
6. link_message_entities - mention links for the triggering message

Upstream calls (the model, each fact's embedding) are retried in place,
so a step that has committed is never repeated within a run. Re-running
the pipeline on the same text is safe for entities and edges (they
upsert); knowledge facts are stored again.
"""
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import settings
from ..database import unit_of_work
from ..errors import NotFoundError, UpstreamError, ValidationError
from ..graph.store import EntityStore
from ..jobs import Job, JobQueue
from ..llm import LLMProvider, get_model_for_task
from ..models.conversation import Message
from ..models.entity import EntityDefinition
from ..models.pipeline import PipelineType
from ..prompts.extractor import (
    CONVERSATION_SEPARATOR,
    MEMORY_EXTRACTOR_PROMPT,
    MEMORY_EXTRACTOR_SYSTEM,
)
from ..run_tracer import PipelineTracer, RunRecorder
from ..schemas.memory import ExtractionResult
from ..tracer import trace_call, trace_result, trace_section, trace_step
from .tiers import DocumentTier, SemanticTier

logger = logging.getLogger(__name__)

DOCUMENT_SOURCE = "extraction_pipeline"


def to_snake_case(text: str) -> str:
    """'Works For' / 'works-for' / 'worksFor' -> 'works_for'."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", text.strip())
    return re.sub(r"[^\w]+|_+", "_", text.lower()).strip("_")


class MemoryExtractionPipeline:
    """
    Extraction of entities, knowledge and relationships from text.

    Usage:
        pipeline = MemoryExtractionPipeline(async_session, llm)
        summary = await pipeline.run(text, message_id, conversation_id, namespace=None)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        llm: LLMProvider,
        tracer: Optional[PipelineTracer] = None,
        semantic: Optional[SemanticTier] = None,
        max_attempts: Optional[int] = None,
        backoff_max: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.llm = llm
        self.tracer = tracer or PipelineTracer(session_factory)
        self.semantic = semantic or SemanticTier.from_settings(session_factory, llm)
        self.documents = DocumentTier(session_factory)
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.backoff_max = settings.job_backoff_max if backoff_max is None else backoff_max

    async def _retrying(self, what: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Await `call`, retrying it on UpstreamError with exponential backoff."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=0.5, min=min(0.5, self.backoff_max), max=self.backoff_max
            ),
            retry=retry_if_exception_type(UpstreamError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logger.warning(f"Retrying {what} (attempt {number})")
                return await call()

    def enqueue(
        self,
        job_queue: JobQueue,
        text: str,
        message_id: str,
        conversation_id: Optional[str] = None,
        *,
        namespace: Optional[str],
    ) -> Job:
        """
        Queue a run on the background job queue.

        The job gets a single attempt; its steps retry their own upstream
        calls instead.

        Raises:
            QueueFullError: when the queue is at capacity
        """
        return job_queue.submit(
            f"extract:{message_id}",
            lambda: self.run(text, message_id, conversation_id, namespace=namespace),
            max_attempts=1,
        )

    async def _extract(self, text: str, task: str) -> ExtractionResult:
        model = get_model_for_task(task)
        trace_call("memory.extraction", "llm.extract_json", f"{len(text)} chars, model={model}")
        data = await self.llm.extract_json(
            prompt=MEMORY_EXTRACTOR_PROMPT.format(text=text),
            schema=ExtractionResult,
            model=model,
            system_prompt=MEMORY_EXTRACTOR_SYSTEM,
        )
        result = ExtractionResult.model_validate(data)
        trace_result(
            "memory.extraction", "llm.extract_json", True,
            f"{len(result.entities)} entities, {len(result.knowledge)} facts, "
            f"{len(result.relationships)} relationships",
        )
        return result

    async def run(
        self,
        text: str,
        message_id: str,
        conversation_id: Optional[str] = None,
        *,
        namespace: Optional[str],
    ) -> Dict[str, Any]:
        """
        Extract and store memories from `text`.

        Returns a summary of what was written. On failure the run is
        marked failed and the error propagates to the job queue.
        """
        trace_section("Memory Extraction")
        recorder = await self.tracer.start_run(message_id, PipelineType.MEMORY_EXTRACTION)

        try:
            summary = await self._run_steps(recorder, text, message_id, conversation_id, namespace)
        except Exception as e:
            logger.error(f"Memory extraction failed for message {message_id}: {e}")
            await recorder.fail(f"{type(e).__name__}: {e}")
            raise

        await recorder.complete(json.dumps(summary))
        return summary

    async def _run_steps(
        self,
        recorder: RunRecorder,
        text: str,
        message_id: str,
        conversation_id: Optional[str],
        namespace: Optional[str],
    ) -> Dict[str, Any]:
        summary: Dict[str, Any] = {}

        # Step 1: Raw text
        async with recorder.step("store_source_document", {"chars": len(text)}) as step:
            document_id = await self.documents.store(
                text,
                DOCUMENT_SOURCE,
                message_id=message_id,
                conversation_id=conversation_id,
                namespace=namespace,
            )
            step.output = {"document_id": document_id}
        summary["document_id"] = document_id

        # Step 2: One structured model call
        model = get_model_for_task("memory_extraction")
        async with recorder.step(
            "llm_extraction",
            {"text": text},
            model_used=model,
            prompt_used=MEMORY_EXTRACTOR_PROMPT.format(text=text),
        ) as step:
            extraction = await self._retrying(
                "llm_extraction", lambda: self._extract(text, "memory_extraction")
            )
            step.output = extraction.model_dump()

        # Step 3: Entities
        batch: Dict[str, EntityDefinition] = {}
        async with recorder.step(
            "upsert_entities",
            [e.model_dump() for e in extraction.entities],
        ) as step:
            created, updated, rejected = await self._upsert_entities(extraction, namespace, batch)
            step.output = {"created": created, "updated": updated, "rejected": rejected}
        summary.update(
            entities_created=len(created),
            entities_updated=len(updated),
            entities_rejected=len(rejected),
        )

        # Step 4: Knowledge
        async with recorder.step("store_knowledge", extraction.knowledge) as step:
            stored = await self._store_knowledge(extraction.knowledge, message_id, conversation_id, namespace)
            step.output = {"stored": stored}
        summary["knowledge_stored"] = len(stored)

        # Step 5: Relationships
        async with recorder.step(
            "create_relationships",
            [r.model_dump() for r in extraction.relationships],
        ) as step:
            outcome = await self._create_relationships(extraction, namespace, batch)
            step.output = outcome
        summary.update(
            relationships_created=len(outcome["created"]),
            relationships_existing=len(outcome["existing"]),
            relationships_skipped=len(outcome["skipped"]),
        )

        # Step 6: Mention links
        async with recorder.step(
            "link_message_entities",
            {"message_id": message_id, "entity_ids": [e.id for e in batch.values()]},
        ) as step:
            linked = await self._link_message(message_id, batch)
            step.output = {"linked": linked} if linked is not None else {
                "skipped": "message not found"
            }
        summary["entities_linked"] = linked or 0

        trace_step("memory.extraction", f"summary: {summary}")
        return summary

    async def _upsert_entities(
        self,
        extraction: ExtractionResult,
        namespace: Optional[str],
        batch: Dict[str, EntityDefinition],
    ):
        created: List[str] = []
        updated: List[str] = []
        rejected: List[Dict[str, Any]] = []

        async with self._session_factory() as session:
            async with unit_of_work(session):
                store = EntityStore(session)
                for item in extraction.entities:
                    try:
                        entity, is_new = await store.create(
                            {
                                "name": item.name,
                                "type": item.type,
                                "description": item.description,
                            },
                            namespace=namespace,
                        )
                    except ValidationError as e:
                        logger.info(f"Skipping entity {item.name!r}: {e}")
                        rejected.append({"name": item.name, "type": item.type, "violations": e.violations})
                        continue

                    batch.setdefault(entity.name, entity)
                    (created if is_new else updated).append(entity.id)

        return created, updated, rejected

    async def _store_knowledge(
        self,
        knowledge: List[str],
        message_id: str,
        conversation_id: Optional[str],
        namespace: Optional[str],
    ) -> List[str]:
        # Raises before anything is embedded when there is no vector tier
        self.semantic.require_index()

        metadata = {
            "type": "fact",
            "message_id": message_id,
            "conversation_id": conversation_id,
            "namespace": namespace,
        }
        stored = []
        for i, fact in enumerate(f.strip() for f in knowledge):
            if fact:
                stored.append(await self._retrying(
                    f"store_knowledge[{i}]",
                    lambda fact=fact: self.semantic.store(fact, metadata),
                ))
        return stored

    async def _create_relationships(
        self,
        extraction: ExtractionResult,
        namespace: Optional[str],
        batch: Dict[str, EntityDefinition],
    ) -> Dict[str, List[Any]]:
        outcome: Dict[str, List[Any]] = {"created": [], "existing": [], "skipped": []}

        async with self._session_factory() as session:
            async with unit_of_work(session):
                store = EntityStore(session)

                async def resolve(name: str) -> Optional[str]:
                    name = name.strip()
                    if name in batch:
                        return batch[name].id
                    matches = await store.find_by_name(name, namespace=namespace)
                    return matches[0].id if matches else None

                for rel in extraction.relationships:
                    predicate = to_snake_case(rel.predicate)
                    source_id = await resolve(rel.source)
                    target_id = await resolve(rel.target)
                    if not predicate or source_id is None or target_id is None:
                        outcome["skipped"].append(rel.model_dump())
                        continue

                    edge, is_new = await store.create_edge(source_id, predicate, target_id)
                    outcome["created" if is_new else "existing"].append(edge.id)

        return outcome

    async def _link_message(
        self,
        message_id: str,
        batch: Dict[str, EntityDefinition],
    ) -> Optional[int]:
        async with self._session_factory() as session:
            if await session.get(Message, message_id) is None:
                return None
            async with unit_of_work(session):
                store = EntityStore(session)
                linked = 0
                for entity in batch.values():
                    if await store.link_message(message_id, entity.id):
                        linked += 1
        return linked

    async def preview_conversation(self, conversation_id: str) -> ExtractionResult:
        """
        Run extraction over a whole conversation without writing anything.

        Raises:
            NotFoundError: if the conversation has no messages
        """
        async with self._session_factory() as session:
            contents = list((await session.execute(
                select(Message.content)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at, Message.id)
            )).scalars())

        if not contents:
            raise NotFoundError("Conversation messages", conversation_id)

        return await self._extract(
            CONVERSATION_SEPARATOR.join(contents), "conversation_extraction"
        )
