"""Tests for the durable pipeline tracer."""
import pytest

from cognimem.errors import NotFoundError
from cognimem.models.pipeline import PipelineType, RunStatus, StepStatus
from cognimem.run_tracer import PipelineTracer, get_inspection


class TestRunRecorder:

    async def test_steps_and_completion(self, session_factory):
        recorder = await PipelineTracer(session_factory).start_run(
            "msg-1", PipelineType.MEMORY_EXTRACTION
        )
        async with recorder.step("first", {"n": 1}, model_used="fake-model") as step:
            step.output = {"ok": True}
        async with recorder.step("second", config_used={"budget": 10}) as step:
            step.output = ["a", "b"]
        await recorder.complete("done")

        async with session_factory() as session:
            inspection = await get_inspection(session, "msg-1")

        run = inspection.pipeline_run
        assert run.id == recorder.run_id
        assert run.status == RunStatus.COMPLETED
        assert run.final_output == "done"
        assert run.end_time >= run.start_time
        assert run.duration_ms == int((run.end_time - run.start_time).total_seconds() * 1000)

        steps = inspection.pipeline_steps
        assert [(s.step_order, s.step_name) for s in steps] == [(1, "first"), (2, "second")]
        assert steps[0].input_payload == {"n": 1}
        assert steps[0].output_payload == {"ok": True}
        assert steps[0].model_used == "fake-model"
        assert steps[1].config_used == {"budget": 10}
        assert all(s.status == StepStatus.COMPLETED and s.duration_ms >= 0 for s in steps)

    async def test_failed_step_is_recorded_and_raised(self, session_factory):
        recorder = await PipelineTracer(session_factory).start_run(
            "msg-2", PipelineType.MEMORY_EXTRACTION
        )
        with pytest.raises(RuntimeError, match="boom"):
            async with recorder.step("explodes"):
                raise RuntimeError("boom")
        await recorder.fail("RuntimeError: boom")

        async with session_factory() as session:
            inspection = await get_inspection(session, "msg-2")
        (step,) = inspection.pipeline_steps
        assert step.status == StepStatus.FAILED
        assert step.error_message == "boom"
        assert inspection.pipeline_run.status == RunStatus.FAILED
        assert inspection.pipeline_run.error_message == "RuntimeError: boom"

    async def test_run_closes_exactly_once(self, session_factory):
        recorder = await PipelineTracer(session_factory).start_run(
            "msg-3", PipelineType.CONTEXT_ASSEMBLY
        )
        await recorder.complete("ctx")
        with pytest.raises(RuntimeError):
            await recorder.complete("again")
        with pytest.raises(RuntimeError):
            await recorder.fail("late failure")

        async with session_factory() as session:
            run = (await get_inspection(session, "msg-3")).pipeline_run
        assert run.status == RunStatus.COMPLETED
        assert run.final_output == "ctx"

    async def test_caller_supplied_run_id(self, session_factory):
        recorder = await PipelineTracer(session_factory).start_run(
            "msg-4", PipelineType.CONTEXT_ASSEMBLY, run_id="run-fixed"
        )
        assert recorder.run_id == "run-fixed"


class TestInspection:

    async def test_context_assembly_is_primary(self, session_factory):
        tracer = PipelineTracer(session_factory)
        extraction = await tracer.start_run("msg-5", PipelineType.MEMORY_EXTRACTION)
        async with extraction.step("x"):
            pass
        await extraction.complete()
        context = await tracer.start_run("msg-5", PipelineType.CONTEXT_ASSEMBLY)
        async with context.step("y"):
            pass
        await context.complete()

        async with session_factory() as session:
            inspection = await get_inspection(session, "msg-5")

        assert inspection.pipeline_run.id == context.run_id
        assert [r.id for r in inspection.all_runs] == [extraction.run_id, context.run_id]
        assert [s.step_name for s in inspection.pipeline_steps] == ["x", "y"]

    async def test_unknown_message(self, session):
        with pytest.raises(NotFoundError):
            await get_inspection(session, "never-seen")
