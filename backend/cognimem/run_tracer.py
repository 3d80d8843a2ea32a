"""
Pipeline Tracer

Durable trace of pipeline runs. A run row is committed when the pipeline
starts; each step is appended when it finishes; the run is closed exactly
once with its final output or error.

Every write uses its own short-lived session, so a trace survives even
when the traced pipeline rolls back its own transaction.

Usage:
    recorder = await PipelineTracer(async_session).start_run(message_id, PipelineType.MEMORY_EXTRACTION)
    async with recorder.step("llm_extraction", {"text": text}, model_used=model) as step:
        step.output = await llm.extract_json(...)
    await recorder.complete(summary)
"""
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import NotFoundError
from .models.pipeline import (
    PipelineRun,
    PipelineRunStep,
    PipelineType,
    RunStatus,
    StepStatus,
)

logger = logging.getLogger(__name__)


def _millis(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    return to_jsonable_python(value, fallback=str)


class StepHandle:
    """Mutable view of a step while its body runs; set `output` before leaving."""

    def __init__(
        self,
        step_name: str,
        input_payload: Any,
        model_used: Optional[str],
        prompt_used: Optional[str],
        config_used: Any,
    ):
        self.step_name = step_name
        self.input_payload = input_payload
        self.model_used = model_used
        self.prompt_used = prompt_used
        self.config_used = config_used
        self.output: Any = None


class RunRecorder:
    """Appends steps to one run and closes it."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        run_id: str,
        message_id: str,
        pipeline_type: PipelineType,
        start_time: datetime,
    ):
        self._session_factory = session_factory
        self.run_id = run_id
        self.message_id = message_id
        self.pipeline_type = pipeline_type
        self.start_time = start_time
        self._next_order = 1
        self._closed = False

    @asynccontextmanager
    async def step(
        self,
        step_name: str,
        input_payload: Any = None,
        *,
        model_used: Optional[str] = None,
        prompt_used: Optional[str] = None,
        config_used: Any = None,
    ) -> AsyncIterator[StepHandle]:
        """
        Trace one sub-operation.

        The step order is taken on entry, so steps started concurrently
        keep the order in which they were started. An exception in the
        body records a failed step and propagates.
        """
        order = self._next_order
        self._next_order += 1
        handle = StepHandle(step_name, input_payload, model_used, prompt_used, config_used)
        start = datetime.utcnow()

        try:
            yield handle
        except Exception as e:
            try:
                await self._write_step(handle, order, StepStatus.FAILED, start, error=str(e))
            except Exception:
                logger.exception(f"Could not record failed step {step_name} of run {self.run_id}")
            raise

        await self._write_step(handle, order, StepStatus.COMPLETED, start)

    async def _write_step(
        self,
        handle: StepHandle,
        order: int,
        status: StepStatus,
        start: datetime,
        error: Optional[str] = None,
    ) -> None:
        end = datetime.utcnow()
        async with self._session_factory() as session:
            session.add(PipelineRunStep(
                run_id=self.run_id,
                step_order=order,
                step_name=handle.step_name,
                status=status,
                input_payload=_jsonable(handle.input_payload),
                output_payload=_jsonable(handle.output),
                model_used=handle.model_used,
                prompt_used=handle.prompt_used,
                config_used=_jsonable(handle.config_used),
                error_message=error,
                start_time=start,
                end_time=end,
                duration_ms=_millis(start, end),
            ))
            await session.commit()
        logger.debug(f"Run {self.run_id} step {order} {handle.step_name}: {status.value}")

    async def _close(
        self,
        status: RunStatus,
        final_output: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if self._closed:
            raise RuntimeError(f"Run {self.run_id} already finished")
        self._closed = True

        end = datetime.utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                update(PipelineRun)
                .where(PipelineRun.id == self.run_id, PipelineRun.status == RunStatus.RUNNING)
                .values(
                    status=status,
                    final_output=final_output,
                    error_message=error_message,
                    end_time=end,
                    duration_ms=_millis(self.start_time, end),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount == 0:
            raise RuntimeError(f"Run {self.run_id} is not running")
        logger.info(
            f"{self.pipeline_type.value} run {self.run_id} {status.value} "
            f"in {_millis(self.start_time, end)}ms"
        )

    async def complete(self, final_output: Optional[str] = None) -> None:
        await self._close(RunStatus.COMPLETED, final_output=final_output)

    async def fail(self, error_message: str) -> None:
        await self._close(RunStatus.FAILED, error_message=error_message)


class PipelineTracer:
    """Factory for run recorders."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def start_run(
        self,
        message_id: str,
        pipeline_type: PipelineType,
        run_id: Optional[str] = None,
    ) -> RunRecorder:
        """Insert a `running` run and commit it immediately."""
        run = PipelineRun(
            id=run_id or str(uuid.uuid4()),
            message_id=message_id,
            pipeline_type=pipeline_type,
            status=RunStatus.RUNNING,
            start_time=datetime.utcnow(),
        )
        async with self._session_factory() as session:
            session.add(run)
            await session.commit()

        logger.info(f"Started {pipeline_type.value} run {run.id} for message {message_id}")
        return RunRecorder(
            self._session_factory, run.id, message_id, pipeline_type, run.start_time
        )


@dataclass
class Inspection:
    """Everything recorded for one message."""
    pipeline_run: PipelineRun
    all_runs: List[PipelineRun]
    pipeline_steps: List[PipelineRunStep]


async def get_inspection(session: AsyncSession, message_id: str) -> Inspection:
    """
    Runs and steps for a message.

    The primary run is the context assembly if there is one, otherwise
    the earliest run. Steps are ordered by run start, then step order.
    """
    runs = list((await session.execute(
        select(PipelineRun)
        .where(PipelineRun.message_id == message_id)
        .order_by(PipelineRun.start_time, PipelineRun.id)
    )).scalars())
    if not runs:
        raise NotFoundError("Pipeline run for message", message_id)

    primary = next(
        (run for run in runs if run.pipeline_type == PipelineType.CONTEXT_ASSEMBLY),
        runs[0],
    )

    steps = list((await session.execute(
        select(PipelineRunStep)
        .join(PipelineRun, PipelineRun.id == PipelineRunStep.run_id)
        .where(PipelineRun.message_id == message_id)
        .order_by(PipelineRun.start_time, PipelineRun.id, PipelineRunStep.step_order)
    )).scalars())

    return Inspection(pipeline_run=primary, all_runs=runs, pipeline_steps=steps)
