"""
Segment model - saved audience definitions for campaigns.
"""
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import String, Text, Integer, DateTime, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base, JSONType
from src.models.campaign_parts import SegmentCriterion


class SegmentType(str, enum.Enum):
    """Dynamic segments are re-evaluated on use; static ones are frozen lists."""
    DYNAMIC = "dynamic"
    STATIC = "static"


class Segment(Base):
    """
    Segment entity - named, ordered list of criteria combined with AND.
    """
    __tablename__ = "segments"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[SegmentType] = mapped_column(
        SQLEnum(SegmentType, name="segment_type"),
        nullable=False,
        default=SegmentType.DYNAMIC,
    )
    criteria: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Ordered list of {field, operator, value}",
    )
    member_ids: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Frozen lead ids for static segments",
    )
    lead_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

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

    def get_criteria(self) -> List[SegmentCriterion]:
        return [SegmentCriterion.model_validate(c) for c in (self.criteria or [])]

    def __repr__(self) -> str:
        return f"<Segment(id={self.id}, name={self.name}, type={self.type})>"
