"""
Company model - corporate clients that outbound leads convert into contracts.
"""
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base, JSONType


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Prospect")
    contracted_courses: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name={self.name}, status={self.status})>"
