"""
Lead pipeline conversion.

Moving a lead into Closed Won converts it:
- Outbound leads attached to a company become a company contract
- Every other lead becomes a Student enrolled in the resolved course

Preconditions are checked before anything is written, and each conversion
is a single commit.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from src.lib.clock import Clock, get_clock
from src.lib.logging import get_logger
from src.lib.metrics import get_metrics_collector
from src.models.companies import Company
from src.models.leads import Lead, LeadStatus, LeadType, PipelineStage
from src.models.students import Course, Student
from src.services.errors import ConversionValidationError, NotFoundError

logger = get_logger(__name__)


@dataclass
class ConversionResult:
    """What a conversion produced."""
    kind: str  # "student" or "contract"
    lead_id: UUID
    student_id: Optional[UUID] = None
    company_id: Optional[UUID] = None


def resolve_course_ids(lead: Lead, course_ids: Optional[Sequence[str]] = None) -> List[str]:
    """Explicit selection, else the lead's saved selection, else its course of interest."""
    if course_ids:
        return [str(c) for c in course_ids if c]
    if lead.selected_courses:
        return [str(c) for c in lead.selected_courses if c]
    if lead.course_of_interest:
        return [lead.course_of_interest]
    return []


def is_contract_conversion(lead: Lead) -> bool:
    return lead.type == LeadType.OUTBOUND and lead.company_id is not None


class LeadConversionService:
    """Pipeline moves and Closed Won conversions."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or get_clock()
        self.metrics = get_metrics_collector()

    def get_lead(self, lead_id: UUID) -> Lead:
        lead = self.db.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        return lead

    def validate_conversion(
        self,
        lead: Lead,
        course_ids: Optional[Sequence[str]] = None,
        contract_name: Optional[str] = None,
    ) -> List[str]:
        """
        Check a Closed Won conversion can go ahead.

        Returns:
            Resolved course ids

        Raises:
            ConversionValidationError: No course, missing contract name,
                unknown company, or lead already converted
        """
        if lead.converted:
            raise ConversionValidationError(
                "Lead has already been converted",
                details={"lead_id": str(lead.id)},
            )

        courses = resolve_course_ids(lead, course_ids)
        if not courses:
            raise ConversionValidationError(
                "Please select at least one course before closing the deal",
                details={"lead_id": str(lead.id)},
            )

        if is_contract_conversion(lead):
            if not (contract_name or "").strip():
                raise ConversionValidationError(
                    "Contract name is required for outbound leads",
                    details={"lead_id": str(lead.id)},
                )
            if self.db.get(Company, lead.company_id) is None:
                raise ConversionValidationError(
                    "Company not found",
                    details={"lead_id": str(lead.id), "company_id": str(lead.company_id)},
                )

        return courses

    def _course_title(self, course_id: str) -> str:
        try:
            course = self.db.get(Course, UUID(course_id))
        except ValueError:
            course = None
        return course.title if course is not None else course_id

    def convert(
        self,
        lead: Lead,
        course_ids: Optional[Sequence[str]] = None,
        contract_name: Optional[str] = None,
    ) -> ConversionResult:
        """
        Convert a lead into a student or a company contract.

        Args:
            lead: Lead to convert
            course_ids: Selected course ids (falls back to the lead's own)
            contract_name: Required for outbound leads attached to a company

        Returns:
            ConversionResult
        """
        courses = self.validate_conversion(lead, course_ids, contract_name)
        now = self.clock.now()

        if is_contract_conversion(lead):
            company = self.db.get(Company, lead.company_id)
            contracted = list(company.contracted_courses or [])
            contracted.extend(c for c in courses if c not in contracted)
            company.contracted_courses = contracted
            company.status = "Active"
            lead.contract_name = contract_name.strip()
            result = ConversionResult(kind="contract", lead_id=lead.id, company_id=company.id)
        else:
            course_id = lead.course_of_interest or courses[0]
            student = Student(
                name=lead.name,
                email=lead.email,
                status="Active",
                course=course_id,
                course_title=self._course_title(course_id),
                enrollment_date=now,
            )
            self.db.add(student)
            self.db.flush()
            result = ConversionResult(kind="student", lead_id=lead.id, student_id=student.id)

        lead.status = LeadStatus.CONVERTED
        lead.pipeline = PipelineStage.CLOSED_WON
        lead.selected_courses = courses
        lead.converted = True
        lead.last_interaction_date = now
        self.db.commit()

        self.metrics.increment_conversions(result.kind)
        logger.info(
            f"Lead converted to {result.kind}",
            extra={"lead_id": str(lead.id), "courses": courses},
        )
        return result

    def move_to_stage(
        self,
        lead_id: UUID,
        stage: PipelineStage,
        course_ids: Optional[Sequence[str]] = None,
        contract_name: Optional[str] = None,
    ) -> Lead:
        """
        Move a lead along the pipeline.

        Closed Won triggers conversion; every other stage only updates the
        pipeline field.
        """
        lead = self.get_lead(lead_id)

        if stage == PipelineStage.CLOSED_WON:
            self.convert(lead, course_ids, contract_name)
            return lead

        lead.pipeline = stage
        lead.last_interaction_date = self.clock.now()
        self.db.commit()

        logger.info(f"Lead moved to {stage.value}", extra={"lead_id": str(lead.id)})
        return lead
