"""
Context Assembly Pipeline

Builds the memory context for one user message:
1. Query the episodic, semantic, structured and graph tiers concurrently
2. Record each tier as a traced step (a failing tier is an empty section)
3. Compose the successful tiers under a character budget

Composition order is structured, graph, semantic, episodic. Over budget,
episodic turns are dropped oldest first, then semantic facts lowest score
first, each down to a floor; graph and then structured are cut only as a
last resort. A section that has content is never dropped entirely.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..llm import LLMProvider
from ..models.pipeline import PipelineType
from ..run_tracer import PipelineTracer, RunRecorder
from ..tracer import trace_section, trace_step, trace_tier
from .tiers import (
    EpisodicTier,
    GraphTier,
    SemanticTier,
    StructuredTier,
    TierResult,
    TierStatus,
    run_tier,
)

logger = logging.getLogger(__name__)

QUERY_ORDER = ("episodic", "semantic", "structured", "graph")
SECTION_ORDER = ("structured", "graph", "semantic", "episodic")
TRUNCATION_ORDER = ("episodic", "semantic", "graph", "structured")

SECTION_HEADERS = {
    "structured": "=== SHARED MEMORY (ENTITIES) ===",
    "graph": "=== RELATIONSHIP GRAPH ===",
    "semantic": "=== GLOBAL KNOWLEDGE ===",
    "episodic": "=== RECENT CONVERSATION ===",
}

SECTION_SEPARATOR = "\n\n"


@dataclass
class ContextAssemblyRequest:
    conversation_id: str
    user_query: str
    message_id: str
    mentioned_entities: List[str] = field(default_factory=list)
    run_id: Optional[str] = None
    namespace: Optional[str] = None


@dataclass
class ContextAssemblyResult:
    run_id: str
    context: str
    tiers: Dict[str, TierResult]


# =============================================================================
# Composition
# =============================================================================

def _render_lines(tier: str, payload: List[Any]) -> List[str]:
    if tier == "structured":
        lines = []
        for item in payload:
            if item["kind"] == "entity":
                line = f"- {item['name']} ({item['type']})"
                if item.get("description"):
                    line += f": {item['description']}"
            else:
                details = ", ".join(
                    str(item[key]) for key in ("company", "email", "notes") if item.get(key)
                )
                line = f"- {item['name']} (Contact)" + (f": {details}" if details else "")
            lines.append(line)
        return lines
    if tier == "graph":
        return [f"- {sentence}" for sentence in payload]
    if tier == "semantic":
        return [f"- {fact['text']}" for fact in payload]
    return [f"{turn['role']}: {turn['content']}" for turn in payload]


class _Section:
    def __init__(self, tier: str, lines: List[str]):
        self.tier = tier
        self.header = SECTION_HEADERS[tier]
        self.lines = lines
        self.clip: Optional[int] = None
        self.truncated = False

    def render(self) -> str:
        text = "\n".join([self.header, *self.lines])
        return text if self.clip is None else text[:self.clip]

    def __len__(self) -> int:
        return len(self.render())

    def drop_line(self) -> None:
        # Episodic lines are chronological, semantic lines best-first:
        # either way the least useful line is at the oldest/lowest end
        self.lines.pop(0 if self.tier == "episodic" else -1)
        self.truncated = True


def compose_context(
    results: Dict[str, TierResult],
    budget: int,
    floor: int,
) -> str:
    """Render successful tiers as headed sections that fit the budget where possible."""
    sections = [
        _Section(tier, _render_lines(tier, results[tier].payload))
        for tier in SECTION_ORDER
        if tier in results and results[tier].status == TierStatus.SUCCESS
    ]
    if not sections:
        return ""

    def total() -> int:
        return sum(len(s) for s in sections) + len(SECTION_SEPARATOR) * (len(sections) - 1)

    by_tier = {s.tier: s for s in sections}
    for tier in TRUNCATION_ORDER:
        section = by_tier.get(tier)
        if section is None or total() <= budget:
            continue

        while total() > budget and len(section.lines) > 1:
            dropped = section.lines[0 if tier == "episodic" else -1]
            if len(section) - len(dropped) - 1 < floor:
                break
            section.drop_line()

        excess = total() - budget
        if excess > 0 and len(section) > floor:
            section.clip = max(floor, len(section) - excess)
            section.truncated = True

    return SECTION_SEPARATOR.join(s.render() for s in sections)


# =============================================================================
# Pipeline
# =============================================================================

class ContextAssemblyPipeline:
    """
    Fan-out over the memory tiers, traced as a ContextAssembly run.

    Usage:
        pipeline = ContextAssemblyPipeline(async_session, llm)
        result = await pipeline.run(ContextAssemblyRequest(...))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        llm: LLMProvider,
        tracer: Optional[PipelineTracer] = None,
        semantic: Optional[SemanticTier] = None,
    ):
        self.tracer = tracer or PipelineTracer(session_factory)
        self.episodic = EpisodicTier(session_factory)
        self.semantic = semantic or SemanticTier.from_settings(session_factory, llm)
        self.structured = StructuredTier(session_factory)
        self.graph = GraphTier(session_factory)

    def _tier_query(self, tier: str, request: ContextAssemblyRequest):
        if tier == "episodic":
            return self.episodic.query(request.conversation_id, settings.episodic_turn_limit)
        if tier == "semantic":
            return self.semantic.query(
                request.user_query,
                settings.semantic_top_k,
                {"namespace": request.namespace},
            )
        if tier == "structured":
            return self.structured.query(
                request.user_query, request.mentioned_entities, namespace=request.namespace
            )
        return self.graph.query(
            request.user_query, request.mentioned_entities, namespace=request.namespace
        )

    async def _traced_tier(
        self,
        recorder: RunRecorder,
        tier: str,
        request: ContextAssemblyRequest,
    ) -> TierResult:
        step_input = {
            "query": request.user_query,
            "mentioned_entities": request.mentioned_entities,
            "conversation_id": request.conversation_id,
            "namespace": request.namespace,
        }
        async with recorder.step(f"query_{tier}_tier", step_input) as step:
            result = await run_tier(tier, self._tier_query(tier, request))
            step.output = {
                "status": result.status.value,
                "count": result.size(),
                "payload": result.payload,
                "error": result.error,
            }
        trace_tier(tier, result.status.value, result.size())
        return result

    async def run(self, request: ContextAssemblyRequest) -> ContextAssemblyResult:
        trace_section("Context Assembly")
        recorder = await self.tracer.start_run(
            request.message_id, PipelineType.CONTEXT_ASSEMBLY, run_id=request.run_id
        )

        try:
            results = await asyncio.gather(
                *(self._traced_tier(recorder, tier, request) for tier in QUERY_ORDER)
            )
            tiers = dict(zip(QUERY_ORDER, results))

            config = {
                "context_char_budget": settings.context_char_budget,
                "context_section_floor": settings.context_section_floor,
            }
            async with recorder.step(
                "compose_context",
                {tier: result.status.value for tier, result in tiers.items()},
                config_used=config,
            ) as step:
                context = compose_context(
                    tiers, settings.context_char_budget, settings.context_section_floor
                )
                step.output = {"chars": len(context)}
        except Exception as e:
            logger.error(f"Context assembly failed for message {request.message_id}: {e}")
            await recorder.fail(f"{type(e).__name__}: {e}")
            raise

        await recorder.complete(context)
        trace_step("context_assembly", f"context ready ({len(context)} chars)")
        return ContextAssemblyResult(run_id=recorder.run_id, context=context, tiers=tiers)
