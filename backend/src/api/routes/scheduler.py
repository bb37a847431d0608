"""
Internal API routes for the campaign scheduler.

These endpoints are intended for internal service-to-service calls and
external triggers. They should be protected by internal authentication in
production deployments.

Endpoints:
- POST /internal/scheduler/tick: Run one campaign tick now
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from src.api.dependencies import get_db
from src.jobs.campaign_scheduler import CampaignScheduler
from src.lib.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/internal/scheduler", tags=["Internal Scheduler"])


class CampaignOutcomeResponse(BaseModel):
    campaign_id: str
    name: str
    status: str
    error: Optional[str] = None
    sent: int = 0


class TickResponse(BaseModel):
    correlation_id: str
    ran_at: datetime
    evaluated: int
    fired: int
    paused: int
    results: List[CampaignOutcomeResponse]


@router.post("/tick", response_model=TickResponse)
async def run_tick(db: Session = Depends(get_db)) -> TickResponse:
    """
    Evaluate every Scheduled campaign once.

    Safe to call while the background tick runs: campaigns are claimed
    with a compare-and-set on status before anything is sent.
    """
    report = await CampaignScheduler(db).tick()
    logger.info(f"On-demand tick fired {report.fired} campaign(s)")
    return TickResponse(**report.as_dict())
