"""
Admin API routes for marketing campaigns.

Endpoints:
- POST   /admin/campaigns: Create a Draft campaign
- GET    /admin/campaigns/{id}: Campaign detail
- POST   /admin/campaigns/{id}/schedule: Attach a schedule (-> Scheduled)
- POST   /admin/campaigns/{id}/status: Change status (Active sends now)
- POST   /admin/campaigns/{id}/duplicate: Draft copy
- POST   /admin/campaigns/{id}/test-send: Send a [TEST] copy to one address
- A/B testing under /admin/campaigns/{id}/ab-test
- Funnel steps under /admin/campaigns/{id}/funnel
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.api.dependencies import get_campaign_service
from src.lib.logging import get_logger
from src.models.campaign_parts import (
    ABTest,
    Audience,
    CampaignMetrics,
    Content,
    Frequency,
    Funnel,
    FunnelStep,
    FunnelStepType,
    Schedule,
)
from src.models.campaigns import Campaign, CampaignStatus, CampaignType
from src.services.campaign_service import CampaignService

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/campaigns", tags=["Admin Campaigns"])


# Request/Response Models
class CampaignCreateRequest(BaseModel):
    """Payload for creating a campaign."""

    name: str = Field(..., min_length=1, max_length=200)
    type: CampaignType
    description: Optional[str] = None
    content: Content = Field(default_factory=Content)
    audience: Audience = Field(default_factory=Audience)
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None


class ScheduleRequest(BaseModel):
    """
    Schedule payload.

    Dates and time are taken as strings so malformed values reach the
    schedule validator and come back as a schedule error.
    """

    start_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    end_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    frequency: Optional[Frequency] = None
    send_time: Optional[str] = Field(default=None, description="HH:MM (24h)")
    timezone: Optional[str] = None


class StatusRequest(BaseModel):
    status: CampaignStatus


class TestSendRequest(BaseModel):
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")


class ABToggleRequest(BaseModel):
    enabled: bool


class VariantCreateRequest(BaseModel):
    name: Optional[str] = None
    content: Optional[Content] = None


class VariantUpdateRequest(BaseModel):
    name: Optional[str] = None
    content: Content


class AllocationRequest(BaseModel):
    allocation: int = Field(..., description="Requested percentage; clamped to the allowed range")


class FunnelStepRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: FunnelStepType
    description: Optional[str] = None
    content: Optional[str] = None
    condition: Optional[str] = None
    delay: int = Field(default=0, ge=0, description="Hours; used by Wait steps")


class FunnelStepUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[FunnelStepType] = None
    description: Optional[str] = None
    content: Optional[str] = None
    condition: Optional[str] = None
    delay: Optional[int] = Field(default=None, ge=0)


class ReorderRequest(BaseModel):
    step_ids: List[str]


class CampaignResponse(BaseModel):
    """Campaign aggregate as returned by the admin API."""

    id: UUID
    name: str
    description: Optional[str] = None
    type: CampaignType
    status: CampaignStatus
    schedule: Optional[Schedule] = None
    audience: Audience
    content: Content
    ab_test: ABTest
    funnel: Funnel
    metrics: CampaignMetrics
    tags: List[str] = Field(default_factory=list)
    last_sent_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_model(cls, campaign: Campaign) -> "CampaignResponse":
        return cls(
            id=campaign.id,
            name=campaign.name,
            description=campaign.description,
            type=campaign.type,
            status=campaign.status,
            schedule=campaign.get_schedule(),
            audience=campaign.get_audience(),
            content=campaign.get_content(),
            ab_test=campaign.get_ab_test(),
            funnel=campaign.get_funnel(),
            metrics=campaign.get_metrics(),
            tags=list(campaign.tags or []),
            last_sent_at=campaign.last_sent_at,
            last_error=campaign.last_error,
            created_at=campaign.created_at,
        )


class FunnelRunResponse(BaseModel):
    step_id: str
    next_step: Optional[FunnelStep] = None


class TestSendResponse(BaseModel):
    sent: bool
    to: str


# ----- lifecycle -----

@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    request: CampaignCreateRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    """Create a campaign in Draft status."""
    campaign = service.create_campaign(
        name=request.name,
        type=request.type,
        description=request.description,
        content=request.content,
        audience=request.audience,
        tags=request.tags,
        created_by=request.created_by,
    )
    return CampaignResponse.from_model(campaign)


@router.get("/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(
    campaign_id: UUID,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    return CampaignResponse.from_model(service.get_campaign(campaign_id))


@router.post("/{campaign_id}/schedule", response_model=CampaignResponse)
async def schedule_campaign(
    campaign_id: UUID,
    request: ScheduleRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    """
    Attach a schedule and move the campaign to Scheduled.

    Missing start date/time, malformed dates, bad HH:MM or an end date
    before the start date are rejected with 422.
    """
    campaign = service.schedule_campaign(campaign_id, request.model_dump(exclude_none=True))
    return CampaignResponse.from_model(campaign)


@router.post("/{campaign_id}/status", response_model=CampaignResponse)
async def update_campaign_status(
    campaign_id: UUID,
    request: StatusRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    """
    Change campaign status.

    Setting Active sends the campaign immediately; a failed send leaves it
    Paused with last_error set.
    """
    campaign = await service.update_campaign_status(campaign_id, request.status)
    if campaign.status != request.status:
        logger.warning(
            f"Campaign {campaign_id} requested {request.status.value}, ended {campaign.status.value}",
            extra={"last_error": campaign.last_error},
        )
    return CampaignResponse.from_model(campaign)


@router.post("/{campaign_id}/duplicate", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_campaign(
    campaign_id: UUID,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    return CampaignResponse.from_model(service.duplicate_campaign(campaign_id))


@router.post("/{campaign_id}/test-send", response_model=TestSendResponse)
async def test_send(
    campaign_id: UUID,
    request: TestSendRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> TestSendResponse:
    result = await service.test_send(campaign_id, request.email)
    return TestSendResponse(sent=result.success, to=request.email)


# ----- A/B testing -----

@router.put("/{campaign_id}/ab-test", response_model=CampaignResponse)
async def toggle_ab_test(
    campaign_id: UUID,
    request: ABToggleRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    return CampaignResponse.from_model(service.set_ab_test_enabled(campaign_id, request.enabled))


@router.post("/{campaign_id}/ab-test/variants", response_model=CampaignResponse)
async def add_variant(
    campaign_id: UUID,
    request: VariantCreateRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    """Add a variant; traffic is re-split evenly."""
    return CampaignResponse.from_model(service.add_variant(campaign_id, request.name, request.content))


@router.put("/{campaign_id}/ab-test/variants/{variant_id}", response_model=CampaignResponse)
async def update_variant(
    campaign_id: UUID,
    variant_id: str,
    request: VariantUpdateRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    campaign = service.update_variant_content(campaign_id, variant_id, request.name, request.content)
    return CampaignResponse.from_model(campaign)


@router.delete("/{campaign_id}/ab-test/variants/{variant_id}", response_model=CampaignResponse)
async def remove_variant(
    campaign_id: UUID,
    variant_id: str,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    return CampaignResponse.from_model(service.remove_variant(campaign_id, variant_id))


@router.put("/{campaign_id}/ab-test/variants/{variant_id}/allocation", response_model=CampaignResponse)
async def set_allocation(
    campaign_id: UUID,
    variant_id: str,
    request: AllocationRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    """Set one variant's share; the others are rescaled to keep 100%."""
    campaign = service.set_variant_allocation(campaign_id, variant_id, request.allocation)
    return CampaignResponse.from_model(campaign)


@router.post("/{campaign_id}/ab-test/winner/{variant_id}", response_model=CampaignResponse)
async def declare_winner(
    campaign_id: UUID,
    variant_id: str,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    return CampaignResponse.from_model(service.declare_winner(campaign_id, variant_id))


# ----- funnel -----

@router.post("/{campaign_id}/funnel/steps", response_model=CampaignResponse)
async def add_funnel_step(
    campaign_id: UUID,
    request: FunnelStepRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    step = FunnelStep(**request.model_dump())
    return CampaignResponse.from_model(service.add_funnel_step(campaign_id, step))


@router.patch("/{campaign_id}/funnel/steps/{step_id}", response_model=CampaignResponse)
async def update_funnel_step(
    campaign_id: UUID,
    step_id: str,
    request: FunnelStepUpdateRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    changes: Dict[str, Any] = request.model_dump(exclude_unset=True)
    return CampaignResponse.from_model(service.update_funnel_step(campaign_id, step_id, changes))


@router.delete("/{campaign_id}/funnel/steps/{step_id}", response_model=CampaignResponse)
async def remove_funnel_step(
    campaign_id: UUID,
    step_id: str,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    return CampaignResponse.from_model(service.remove_funnel_step(campaign_id, step_id))


@router.put("/{campaign_id}/funnel/order", response_model=CampaignResponse)
async def reorder_funnel(
    campaign_id: UUID,
    request: ReorderRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    """Reorder steps; the list must contain every step id exactly once."""
    return CampaignResponse.from_model(service.reorder_funnel(campaign_id, request.step_ids))


@router.post("/{campaign_id}/funnel/steps/{step_id}/run", response_model=FunnelRunResponse)
async def run_funnel_step(
    campaign_id: UUID,
    step_id: str,
    service: CampaignService = Depends(get_campaign_service),
) -> FunnelRunResponse:
    """Execute one funnel step now and report the step that follows."""
    following = await service.run_funnel_step(campaign_id, step_id)
    return FunnelRunResponse(step_id=step_id, next_step=following)
