"""
Student and Course models - enrolment side of the CRM.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Upcoming")

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, title={self.title})>"


class Student(Base):
    """
    Student entity - created when an inbound lead reaches Closed Won.
    """
    __tablename__ = "students"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Active")
    course: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    course_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    enrollment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, name={self.name}, course={self.course})>"
