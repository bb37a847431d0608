"""
API dependencies for FastAPI dependency injection.

Provides the database session and the engine's service objects.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from src.lib.db import get_db as get_db_session
from src.services.campaign_service import CampaignService
from src.services.lead_conversion import LeadConversionService
from src.services.segmentation_service import SegmentationService


# Re-export get_db for convenience
get_db = get_db_session


def get_campaign_service(db: Session = Depends(get_db)) -> CampaignService:
    return CampaignService(db)


def get_segmentation_service(db: Session = Depends(get_db)) -> SegmentationService:
    return SegmentationService(db)


def get_lead_conversion_service(db: Session = Depends(get_db)) -> LeadConversionService:
    return LeadConversionService(db)
