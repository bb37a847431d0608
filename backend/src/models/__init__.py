"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from src.models.users import User
from src.models.companies import Company
from src.models.students import Course, Student
from src.models.leads import Lead
from src.models.segments import Segment
from src.models.email_templates import EmailTemplate
from src.models.campaigns import Campaign
from src.models.notifications import Notification
from src.models.jobs import Job

__all__ = [
    "User",
    "Company",
    "Course",
    "Student",
    "Lead",
    "Segment",
    "EmailTemplate",
    "Campaign",
    "Notification",
    "Job",
]
