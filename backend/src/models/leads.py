"""
Lead model - CRM prospects. Read by the segment matcher, written only by
pipeline conversion.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base, JSONType


class LeadStatus(str, enum.Enum):
    """Lead qualification status."""
    NEW = "New"
    CONTACTED = "Contacted"
    QUALIFIED = "Qualified"
    LOST = "Lost"
    CONVERTED = "Converted"


class LeadType(str, enum.Enum):
    """Inbound leads become students, outbound ones become company contracts."""
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"


class PipelineStage(str, enum.Enum):
    """Sales pipeline stages, in board order."""
    PROSPECTING = "Prospecting"
    INITIAL_CONTACT = "Initial Contact"
    MEETING_SCHEDULED = "Meeting Scheduled"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    CLOSED_WON = "Closed Won"
    CLOSED_LOST = "Closed Lost"


class Lead(Base):
    """
    Lead entity.
    """
    __tablename__ = "leads"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[LeadStatus] = mapped_column(
        SQLEnum(LeadStatus, name="lead_status"),
        nullable=False,
        default=LeadStatus.NEW,
        index=True,
    )
    source: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    type: Mapped[LeadType] = mapped_column(
        SQLEnum(LeadType, name="lead_type"),
        nullable=False,
        default=LeadType.INBOUND,
    )
    pipeline: Mapped[PipelineStage] = mapped_column(
        SQLEnum(PipelineStage, name="pipeline_stage"),
        nullable=False,
        default=PipelineStage.PROSPECTING,
        index=True,
    )
    campaign: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Conversion targets
    company_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )
    course_of_interest: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    selected_courses: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    contract_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    converted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Follow-up tracking
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="Date the lead was added",
    )
    last_interaction_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_interaction_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    next_contact_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, name={self.name}, pipeline={self.pipeline})>"
