"""
Campaign model - the marketing campaign aggregate.

Scalar columns hold what the scheduler filters and updates on every tick;
the nested parts (schedule, audience, content, A/B test, funnel, metrics)
are JSON documents validated through the value objects in
``src.models.campaign_parts``.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Text, DateTime, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base, JSONType
from src.models.campaign_parts import (
    ABTest,
    Audience,
    CampaignMetrics,
    Content,
    Funnel,
    Schedule,
)


class CampaignType(str, enum.Enum):
    """Campaign channel type."""
    EMAIL = "Email"
    SMS = "SMS"
    SOCIAL = "Social"
    PAID_ADS = "PaidAds"
    EVENT = "Event"
    WEBINAR = "Webinar"
    DIRECT = "Direct"
    MULTI_CHANNEL = "Multi-channel"


class CampaignStatus(str, enum.Enum):
    """Campaign lifecycle status."""
    DRAFT = "Draft"
    SCHEDULED = "Scheduled"
    ACTIVE = "Active"
    PAUSED = "Paused"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


TERMINAL_STATUSES = frozenset({CampaignStatus.COMPLETED, CampaignStatus.CANCELLED})


class Campaign(Base):
    """
    Campaign entity - owned by the engine, never deleted by it.
    """
    __tablename__ = "campaigns"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    type: Mapped[CampaignType] = mapped_column(
        SQLEnum(CampaignType, name="campaign_type"),
        nullable=False,
        index=True,
    )
    status: Mapped[CampaignStatus] = mapped_column(
        SQLEnum(CampaignStatus, name="campaign_status"),
        nullable=False,
        default=CampaignStatus.DRAFT,
        index=True,
    )

    # Nested parts, stored by value
    schedule: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="startDate, endDate, frequency, sendTime, timezone",
    )
    audience: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Segment reference or inline criteria",
    )
    content: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ab_test: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    funnel: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    metrics: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    tags: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Delivery bookkeeping
    last_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ----- typed views over the JSON parts -----

    def get_schedule(self) -> Optional[Schedule]:
        """Parsed schedule; raises pydantic.ValidationError on malformed data."""
        return Schedule.model_validate(self.schedule) if self.schedule else None

    def set_schedule(self, schedule: Schedule) -> None:
        self.schedule = schedule.model_dump(mode="json")

    def get_audience(self) -> Audience:
        return Audience.model_validate(self.audience or {})

    def set_audience(self, audience: Audience) -> None:
        self.audience = audience.model_dump(mode="json")

    def get_content(self) -> Content:
        return Content.model_validate(self.content or {})

    def get_ab_test(self) -> ABTest:
        return ABTest.model_validate(self.ab_test or {})

    def set_ab_test(self, ab_test: ABTest) -> None:
        self.ab_test = ab_test.model_dump(mode="json")

    def get_funnel(self) -> Funnel:
        return Funnel.model_validate(self.funnel or {})

    def set_funnel(self, funnel: Funnel) -> None:
        self.funnel = funnel.model_dump(mode="json")

    def get_metrics(self) -> CampaignMetrics:
        return CampaignMetrics.model_validate(self.metrics or {})

    def set_metrics(self, metrics: CampaignMetrics) -> None:
        self.metrics = metrics.model_dump(mode="json")

    def __repr__(self) -> str:
        return f"<Campaign(id={self.id}, type={self.type}, status={self.status})>"
