"""
Pipeline Inspection Schemas
"""
from datetime import datetime
from typing import Any, List, Optional

from .base import CamelModel
from ..models.pipeline import PipelineType, RunStatus, StepStatus


class PipelineRunResponse(CamelModel):
    id: str
    message_id: str
    pipeline_type: PipelineType
    status: RunStatus
    final_output: Optional[str] = None
    error_message: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None


class PipelineStepResponse(CamelModel):
    id: str
    run_id: str
    step_order: int
    step_name: str
    status: StepStatus
    input_payload: Optional[Any] = None
    output_payload: Optional[Any] = None
    model_used: Optional[str] = None
    prompt_used: Optional[str] = None
    config_used: Optional[Any] = None
    error_message: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration_ms: int


class InspectionResponse(CamelModel):
    """Everything recorded for one message."""
    pipeline_run: PipelineRunResponse
    all_runs: List[PipelineRunResponse]
    pipeline_steps: List[PipelineStepResponse]
