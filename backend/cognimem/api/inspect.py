"""
Inspection API

Read-only view of the pipeline runs recorded for a message.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..run_tracer import get_inspection
from ..schemas.pipeline import InspectionResponse, PipelineRunResponse, PipelineStepResponse

router = APIRouter(prefix="/inspect", tags=["inspect"])


@router.get("/{message_id}", response_model=InspectionResponse)
async def inspect_message(
    message_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Primary run, every run, and every step traced for the message."""
    inspection = await get_inspection(db, message_id)
    return InspectionResponse(
        pipeline_run=PipelineRunResponse.model_validate(inspection.pipeline_run),
        all_runs=[PipelineRunResponse.model_validate(r) for r in inspection.all_runs],
        pipeline_steps=[PipelineStepResponse.model_validate(s) for s in inspection.pipeline_steps],
    )
