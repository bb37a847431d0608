"""
Admin API routes for audience segments.

Endpoints:
- POST /admin/segments: Save a dynamic or static segment
- GET  /admin/segments/{id}: Segment detail
- POST /admin/segments/preview: Count leads matching criteria
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.api.dependencies import get_segmentation_service
from src.models.campaign_parts import SegmentCriterion
from src.models.segments import Segment, SegmentType
from src.services.segmentation_service import SegmentationService

router = APIRouter(prefix="/admin/segments", tags=["Admin Segments"])


class SegmentCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    type: SegmentType = SegmentType.DYNAMIC
    criteria: List[SegmentCriterion] = Field(default_factory=list)
    member_ids: Optional[List[UUID]] = Field(
        default=None,
        description="Static segments only; omitted means freeze the current matches",
    )
    created_by: Optional[str] = None


class SegmentResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    type: SegmentType
    criteria: List[SegmentCriterion]
    lead_count: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_model(cls, segment: Segment) -> "SegmentResponse":
        return cls(
            id=segment.id,
            name=segment.name,
            description=segment.description,
            type=segment.type,
            criteria=segment.get_criteria(),
            lead_count=segment.lead_count,
            created_at=segment.created_at,
        )


class PreviewRequest(BaseModel):
    criteria: List[SegmentCriterion] = Field(default_factory=list)


class PreviewResponse(BaseModel):
    lead_count: int


@router.post("", response_model=SegmentResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(
    request: SegmentCreateRequest,
    service: SegmentationService = Depends(get_segmentation_service),
) -> SegmentResponse:
    """Save a segment; dynamic segments may only use known lead fields."""
    segment = service.create_segment(
        name=request.name,
        criteria=request.criteria,
        segment_type=request.type,
        description=request.description,
        member_ids=request.member_ids,
        created_by=request.created_by,
    )
    return SegmentResponse.from_model(segment)


@router.get("/{segment_id}", response_model=SegmentResponse)
async def get_segment(
    segment_id: UUID,
    service: SegmentationService = Depends(get_segmentation_service),
) -> SegmentResponse:
    return SegmentResponse.from_model(service.get_segment(segment_id))


@router.post("/preview", response_model=PreviewResponse)
async def preview_segment(
    request: PreviewRequest,
    service: SegmentationService = Depends(get_segmentation_service),
) -> PreviewResponse:
    return PreviewResponse(lead_count=service.preview(request.criteria))
