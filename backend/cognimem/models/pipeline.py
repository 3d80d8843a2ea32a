"""
Pipeline Trace Models

Durable record of every pipeline run and its steps.
A run is written once at start and once at its terminal state;
steps are append-only.
"""
from datetime import datetime
from sqlalchemy import (
    String, Text, DateTime, Integer, JSON,
    ForeignKey, Enum as SQLEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional
import enum
import uuid

from ..database import Base


class PipelineType(str, enum.Enum):
    """Pipelines that leave a trace."""
    CONTEXT_ASSEMBLY = "ContextAssembly"
    MEMORY_EXTRACTION = "MemoryExtraction"


class RunStatus(str, enum.Enum):
    """Lifecycle of a pipeline run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, enum.Enum):
    """Outcome of a single traced step."""
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineRun(Base):
    """One invocation of a pipeline, keyed by the triggering message."""
    __tablename__ = "pipeline_runs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    message_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True
    )
    pipeline_type: Mapped[PipelineType] = mapped_column(
        SQLEnum(PipelineType),
        nullable=False
    )
    status: Mapped[RunStatus] = mapped_column(
        SQLEnum(RunStatus),
        default=RunStatus.RUNNING,
        nullable=False
    )

    final_output: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_run_message_type", "message_id", "pipeline_type"),
    )

    def __repr__(self) -> str:
        return f"<PipelineRun(id={self.id}, type={self.pipeline_type}, status={self.status})>"


class PipelineRunStep(Base):
    """A sub-operation of a run; never mutated after insert."""
    __tablename__ = "pipeline_run_steps"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    run_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("pipeline_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[StepStatus] = mapped_column(SQLEnum(StepStatus), nullable=False)

    input_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    prompt_used: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    config_used: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "step_order", name="uq_step_order"),
    )

    def __repr__(self) -> str:
        return f"<PipelineRunStep(run={self.run_id}, order={self.step_order}, name={self.step_name})>"
