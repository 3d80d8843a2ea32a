"""Tests for the memory tiers and context assembly."""
import pytest

from cognimem.database import unit_of_work
from cognimem.errors import UpstreamError
from cognimem.graph import EntityStore
from cognimem.memory import ContextAssemblyPipeline, ContextAssemblyRequest, compose_context
from cognimem.memory.context_assembly import SECTION_HEADERS
from cognimem.memory.tiers import (
    EpisodicTier,
    GraphTier,
    SemanticTier,
    SqlVectorIndex,
    StructuredTier,
    TierResult,
    TierStatus,
    run_tier,
)
from cognimem.models.entity import EntityDefinition
from cognimem.models.knowledge import Contact
from cognimem.models.pipeline import RunStatus, StepStatus
from cognimem.run_tracer import get_inspection


async def _seed_graph(session):
    store = EntityStore(session)
    async with unit_of_work(session):
        alice, _ = await store.create(
            {"name": "Alice", "type": "Person", "description": "Engineer", "aliases": ["Ali"]},
            namespace=None,
        )
        acme, _ = await store.create({"name": "Acme", "type": "Company"}, namespace=None)
        bob, _ = await store.create({"name": "Bob", "type": "Person"}, namespace=None)
        await store.create_edge(alice.id, "works_at", acme.id)
        session.add(Contact(name="Alice", email="alice@example.com", company="Acme"))
    return alice, acme, bob


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

class TestTiers:

    async def test_run_tier_folds_outcomes(self):
        async def ok():
            return [1]

        async def nothing():
            return []

        async def broken():
            raise UpstreamError("vector tier not configured")

        assert await run_tier("t", ok()) == TierResult.success([1])
        assert (await run_tier("t", nothing())).status == TierStatus.NULL
        failed = await run_tier("t", broken())
        assert failed.status == TierStatus.ERROR
        assert failed.error == "vector tier not configured"

    async def test_episodic_returns_oldest_first(self, session_factory, make_conversation):
        conversation, _ = await make_conversation(
            ("user", "one"), ("assistant", "two"), ("user", "three")
        )
        turns = await EpisodicTier(session_factory).query(conversation.id, 2)
        assert [t["content"] for t in turns] == ["two", "three"]

    async def test_structured_matches_names_and_aliases(self, session, session_factory):
        alice, _, _ = await _seed_graph(session)
        items = await StructuredTier(session_factory).query(
            "what is ali up to?", [], namespace=None
        )
        assert [(i["kind"], i["name"]) for i in items] == [("entity", "Alice")]

        items = await StructuredTier(session_factory).query(
            "tell me about Alice", [], namespace=None
        )
        assert [(i["kind"], i["name"]) for i in items] == [("entity", "Alice"), ("contact", "Alice")]

        async with session_factory() as fresh:
            assert (await fresh.get(EntityDefinition, alice.id)).access_count == 2

    async def test_graph_renders_sentences(self, session, session_factory):
        await _seed_graph(session)
        sentences = await GraphTier(session_factory).query("", ["Acme"], namespace=None)
        assert sentences == ["Alice works at Acme"]

    async def test_semantic_ranks_by_meaning(self, session_factory, llm):
        tier = SemanticTier(SqlVectorIndex(session_factory), llm)
        await tier.store("Alice likes green tea", {"namespace": None})
        await tier.store("The office moved to Boston", {"namespace": None})
        await tier.store("Work brain fact about tea", {"namespace": "work"})

        matches = await tier.query("does alice like tea", 5, {"namespace": None})
        assert [m["text"] for m in matches][0] == "Alice likes green tea"
        assert len(matches) == 2

    async def test_semantic_disabled(self, llm):
        with pytest.raises(UpstreamError, match="vector tier not configured"):
            await SemanticTier(None, llm).query("x", 3)


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def _results(turns=3, semantic=None):
    return {
        "structured": TierResult.success([
            {"kind": "entity", "id": "1", "name": "Alice", "type": "Person", "description": "Engineer"},
        ]),
        "graph": TierResult.success(["Alice works at Acme"]),
        "semantic": semantic or TierResult.failed(UpstreamError("vector tier not configured")),
        "episodic": TierResult.success([
            {"role": "user", "content": f"message number {i:02d} with some padding"}
            for i in range(turns)
        ]),
    }


class TestComposeContext:

    def test_section_order_and_failed_tier_omitted(self):
        context = compose_context(_results(), budget=10_000, floor=100)
        assert context == "\n\n".join([
            "=== SHARED MEMORY (ENTITIES) ===\n- Alice (Person): Engineer",
            "=== RELATIONSHIP GRAPH ===\n- Alice works at Acme",
            "=== RECENT CONVERSATION ===\n"
            "user: message number 00 with some padding\n"
            "user: message number 01 with some padding\n"
            "user: message number 02 with some padding",
        ])

    def test_semantic_section(self):
        semantic = TierResult.success([{"id": "f", "text": "Alice likes tea", "score": 0.9}])
        context = compose_context(_results(semantic=semantic), budget=10_000, floor=100)
        assert "=== GLOBAL KNOWLEDGE ===\n- Alice likes tea" in context
        assert context.index("GLOBAL KNOWLEDGE") < context.index("RECENT CONVERSATION")

    def test_oldest_turns_dropped_first(self):
        context = compose_context(_results(turns=50), budget=500, floor=100)
        assert len(context) <= 500
        assert "message number 49" in context
        assert "message number 00" not in context
        assert "- Alice (Person): Engineer" in context
        assert "- Alice works at Acme" in context

    def test_semantic_cut_only_after_episodic_floor(self):
        facts = TierResult.success([
            {"id": str(i), "text": f"fact {i:02d} " + "k" * 33, "score": round(0.95 - i * 0.05, 2)}
            for i in range(10)
        ])
        structured = "=== SHARED MEMORY (ENTITIES) ===\n- Alice (Person): Engineer"
        graph = "=== RELATIONSHIP GRAPH ===\n- Alice works at Acme"

        # Shedding old turns is enough: every fact stays
        context = compose_context(_results(turns=10, semantic=facts), budget=800, floor=100)
        assert len(context) <= 800
        assert "message number 05" not in context
        assert "message number 06" in context
        assert all(f"fact {i:02d}" in context for i in range(10))

        # Episodic is at its floor, so the lowest-scored facts go next
        context = compose_context(_results(turns=10, semantic=facts), budget=600, floor=100)
        assert len(context) <= 600
        assert "message number 07" not in context
        assert "message number 09" in context
        assert "fact 09" not in context
        assert "fact 08" not in context
        assert "fact 07" in context
        assert "fact 00" in context
        assert structured in context
        assert graph in context

    def test_sections_survive_tiny_budget(self):
        context = compose_context(_results(turns=50), budget=50, floor=100)
        for tier in ("structured", "graph", "episodic"):
            assert SECTION_HEADERS[tier] in context

    def test_nothing_to_say(self):
        empty = {tier: TierResult.empty() for tier in SECTION_HEADERS}
        assert compose_context(empty, budget=100, floor=10) == ""


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class TestContextAssemblyPipeline:

    async def test_failing_tier_is_isolated(self, session, session_factory, llm, make_conversation):
        await _seed_graph(session)
        conversation, (message,) = await make_conversation(("user", "Where does Alice work?"))
        llm.embed_error = UpstreamError("embedding service down")

        result = await ContextAssemblyPipeline(session_factory, llm).run(ContextAssemblyRequest(
            conversation_id=conversation.id,
            user_query="Where does Alice work?",
            message_id=message.id,
        ))

        assert result.tiers["semantic"].status == TierStatus.ERROR
        assert result.tiers["semantic"].error == "embedding service down"
        assert result.tiers["structured"].status == TierStatus.SUCCESS
        assert result.tiers["graph"].payload == ["Alice works at Acme"]
        assert "=== GLOBAL KNOWLEDGE ===" not in result.context
        assert "- Alice works at Acme" in result.context
        assert "user: Where does Alice work?" in result.context

        async with session_factory() as fresh:
            inspection = await get_inspection(fresh, message.id)
        run = inspection.pipeline_run
        assert run.id == result.run_id
        assert run.status == RunStatus.COMPLETED
        assert run.final_output == result.context

        steps = {s.step_name: s for s in inspection.pipeline_steps}
        assert set(steps) == {
            "query_episodic_tier", "query_semantic_tier", "query_structured_tier",
            "query_graph_tier", "compose_context",
        }
        assert steps["compose_context"].step_order == 5
        # The failed tier is still a completed step; its outcome is in the output
        assert steps["query_semantic_tier"].status == StepStatus.COMPLETED
        assert steps["query_semantic_tier"].output_payload["status"] == "error"

    async def test_semantic_facts_included(self, session_factory, llm, make_conversation):
        conversation, (message,) = await make_conversation(("user", "hello"))
        tier = SemanticTier(SqlVectorIndex(session_factory), llm)
        await tier.store("Alice likes green tea", {"namespace": None})

        result = await ContextAssemblyPipeline(session_factory, llm, semantic=tier).run(
            ContextAssemblyRequest(
                conversation_id=conversation.id,
                user_query="what tea does alice like",
                message_id=message.id,
                run_id="ctx-run",
            )
        )
        assert result.run_id == "ctx-run"
        assert "=== GLOBAL KNOWLEDGE ===\n- Alice likes green tea" in result.context
