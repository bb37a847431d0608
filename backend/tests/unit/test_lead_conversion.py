"""
Unit tests for lead pipeline moves and Closed Won conversion.
"""
from uuid import uuid4

import pytest

from src.lib.metrics import get_metrics_collector
from src.models.companies import Company
from src.models.leads import LeadStatus, LeadType, PipelineStage
from src.models.students import Course, Student
from src.services.errors import ConversionValidationError, NotFoundError
from src.services.lead_conversion import LeadConversionService, resolve_course_ids


@pytest.fixture
def service(db_session, clock):
    return LeadConversionService(db_session, clock=clock)


@pytest.fixture
def course(db_session):
    course = Course(title="Data Science Bootcamp")
    db_session.add(course)
    db_session.commit()
    return course


@pytest.fixture
def company(db_session):
    company = Company(name="Acme Logistics", contracted_courses=["existing-course"])
    db_session.add(company)
    db_session.commit()
    return company


# ============================================================================
# Test: course resolution
# ============================================================================


@pytest.mark.unit
def test_resolve_course_ids_precedence(make_lead):
    """Test explicit courses win over saved ones, then course of interest."""
    lead = make_lead(course_of_interest="ux-design", selected_courses=["saved-1"])

    assert resolve_course_ids(lead, ["picked-1", ""]) == ["picked-1"]
    assert resolve_course_ids(lead) == ["saved-1"]

    lead.selected_courses = None
    assert resolve_course_ids(lead) == ["ux-design"]

    lead.course_of_interest = None
    assert resolve_course_ids(lead) == []


# ============================================================================
# Test: student conversion
# ============================================================================


@pytest.mark.unit
def test_inbound_lead_becomes_student(service, db_session, make_lead, course, clock):
    """Test Closed Won on an inbound lead creates an enrolled student."""
    lead = make_lead(course_of_interest=str(course.id))

    moved = service.move_to_stage(lead.id, PipelineStage.CLOSED_WON)

    student = db_session.query(Student).one()
    assert student.name == lead.name
    assert student.email == lead.email
    assert student.course == str(course.id)
    assert student.course_title == "Data Science Bootcamp"
    assert student.status == "Active"

    assert moved.pipeline == PipelineStage.CLOSED_WON
    assert moved.status == LeadStatus.CONVERTED
    assert moved.converted is True
    assert moved.selected_courses == [str(course.id)]
    assert moved.last_interaction_date == clock.now()
    assert get_metrics_collector().get_counter_value("lead_conversions_total", {"kind": "student"}) == 1


@pytest.mark.unit
def test_unknown_course_id_is_kept_as_title(service, db_session, make_lead):
    """Test a course id with no catalogue entry is used as its own title."""
    lead = make_lead()

    service.move_to_stage(lead.id, PipelineStage.CLOSED_WON, course_ids=["evening-python"])

    student = db_session.query(Student).one()
    assert student.course == "evening-python"
    assert student.course_title == "evening-python"


@pytest.mark.unit
def test_conversion_without_course_is_rejected(service, db_session, make_lead):
    """Test nothing is written when no course can be resolved."""
    lead = make_lead()

    with pytest.raises(ConversionValidationError, match="select at least one course"):
        service.move_to_stage(lead.id, PipelineStage.CLOSED_WON)

    db_session.refresh(lead)
    assert lead.converted is False
    assert lead.pipeline == PipelineStage.PROSPECTING
    assert db_session.query(Student).count() == 0


@pytest.mark.unit
def test_converted_lead_cannot_convert_again(service, db_session, make_lead):
    """Test a second Closed Won does not create a second student."""
    lead = make_lead(course_of_interest="ux-design")
    service.move_to_stage(lead.id, PipelineStage.CLOSED_WON)

    with pytest.raises(ConversionValidationError, match="already been converted"):
        service.move_to_stage(lead.id, PipelineStage.CLOSED_WON)

    assert db_session.query(Student).count() == 1


# ============================================================================
# Test: contract conversion
# ============================================================================


@pytest.mark.unit
def test_outbound_lead_requires_contract_name(service, make_lead, company):
    """Test outbound company leads need a contract name."""
    lead = make_lead(type=LeadType.OUTBOUND, company_id=company.id, course_of_interest="ops-101")

    with pytest.raises(ConversionValidationError, match="Contract name is required"):
        service.move_to_stage(lead.id, PipelineStage.CLOSED_WON, contract_name="   ")


@pytest.mark.unit
def test_outbound_lead_becomes_contract(service, db_session, make_lead, company):
    """Test outbound company leads extend the company's contracted courses."""
    lead = make_lead(type=LeadType.OUTBOUND, company_id=company.id)

    moved = service.move_to_stage(
        lead.id,
        PipelineStage.CLOSED_WON,
        course_ids=["existing-course", "ops-101"],
        contract_name=" Acme 2025 Upskilling ",
    )

    db_session.refresh(company)
    assert company.contracted_courses == ["existing-course", "ops-101"]
    assert company.status == "Active"
    assert moved.contract_name == "Acme 2025 Upskilling"
    assert moved.converted is True
    assert db_session.query(Student).count() == 0
    assert get_metrics_collector().get_counter_value("lead_conversions_total", {"kind": "contract"}) == 1


@pytest.mark.unit
def test_outbound_lead_without_company_becomes_student(service, db_session, make_lead):
    """Test outbound leads with no company follow the student path."""
    lead = make_lead(type=LeadType.OUTBOUND, course_of_interest="ops-101")

    service.move_to_stage(lead.id, PipelineStage.CLOSED_WON)

    assert db_session.query(Student).count() == 1


@pytest.mark.unit
def test_missing_company_is_rejected(service, make_lead, db_session):
    """Test a lead pointing at a deleted company cannot convert."""
    lead = make_lead(type=LeadType.OUTBOUND, course_of_interest="ops-101")
    lead.company_id = uuid4()

    with pytest.raises(ConversionValidationError, match="Company not found"):
        service.validate_conversion(lead, contract_name="Deal")


# ============================================================================
# Test: plain pipeline moves
# ============================================================================


@pytest.mark.unit
def test_move_to_other_stage_only_updates_pipeline(service, db_session, make_lead):
    """Test non-closing stages change the pipeline and nothing else."""
    lead = make_lead()

    moved = service.move_to_stage(lead.id, PipelineStage.NEGOTIATION)

    assert moved.pipeline == PipelineStage.NEGOTIATION
    assert moved.status == LeadStatus.NEW
    assert moved.converted is False
    assert db_session.query(Student).count() == 0


@pytest.mark.unit
def test_move_unknown_lead_raises(service):
    """Test moving a missing lead raises NotFoundError."""
    with pytest.raises(NotFoundError):
        service.move_to_stage(uuid4(), PipelineStage.PROPOSAL)
