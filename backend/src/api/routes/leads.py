"""
Admin API routes for the lead pipeline.

Endpoints:
- POST /admin/leads/{id}/pipeline: Move a lead to a pipeline stage;
  Closed Won converts it into a student or a company contract
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import get_lead_conversion_service
from src.models.leads import LeadStatus, PipelineStage
from src.services.lead_conversion import LeadConversionService

router = APIRouter(prefix="/admin/leads", tags=["Admin Leads"])


class PipelineMoveRequest(BaseModel):
    stage: PipelineStage
    course_ids: List[str] = Field(default_factory=list)
    contract_name: Optional[str] = None


class LeadPipelineResponse(BaseModel):
    id: UUID
    name: str
    status: LeadStatus
    pipeline: PipelineStage
    converted: bool
    selected_courses: List[str] = Field(default_factory=list)
    contract_name: Optional[str] = None


@router.post("/{lead_id}/pipeline", response_model=LeadPipelineResponse)
async def move_lead(
    lead_id: UUID,
    request: PipelineMoveRequest,
    service: LeadConversionService = Depends(get_lead_conversion_service),
) -> LeadPipelineResponse:
    """
    Move a lead along the pipeline.

    Closed Won requires a course, and outbound leads attached to a company
    also need a contract name; both are checked before anything is written.
    """
    lead = service.move_to_stage(lead_id, request.stage, request.course_ids, request.contract_name)
    return LeadPipelineResponse(
        id=lead.id,
        name=lead.name,
        status=lead.status,
        pipeline=lead.pipeline,
        converted=lead.converted,
        selected_courses=list(lead.selected_courses or []),
        contract_name=lead.contract_name,
    )
