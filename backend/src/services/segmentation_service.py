"""
Lead segmentation service for campaigns.

Evaluates leads against ordered lists of segment criteria and resolves a
campaign's audience:
- Criteria are ANDed; an empty list matches every lead
- Unknown fields behave like absent values instead of raising
- Static segments return their frozen membership snapshot
- Dynamic segments and inline criteria are evaluated in-process after a
  single bulk fetch of leads
"""
import enum
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.lib.clock import ensure_utc
from src.lib.logging import get_logger
from src.models.campaign_parts import Audience, SegmentCriterion, SegmentOperator
from src.models.campaigns import Campaign
from src.models.leads import Lead
from src.models.segments import Segment, SegmentType
from src.services.errors import AudienceResolutionError, NotFoundError, SegmentValidationError

logger = get_logger(__name__)


# Segment field vocabulary -> Lead attribute
FIELD_ATTRIBUTES = {
    "name": "name",
    "email": "email",
    "status": "status",
    "source": "source",
    "type": "type",
    "pipeline": "pipeline",
    "date": "date",
    "lastInteractionDate": "last_interaction_date",
    "nextContactDate": "next_contact_date",
    "courseOfInterest": "course_of_interest",
}
KNOWN_FIELDS = frozenset(FIELD_ATTRIBUTES)

_ABSENT = object()

CriterionLike = Union[SegmentCriterion, Mapping[str, Any]]


def _field_value(lead: Any, field: str) -> Any:
    """Read a vocabulary field from an ORM lead or a plain mapping."""
    attr = FIELD_ATTRIBUTES.get(field)
    if attr is None:
        return _ABSENT

    if isinstance(lead, Mapping):
        if field in lead:
            value = lead[field]
        elif attr in lead:
            value = lead[attr]
        else:
            return _ABSENT
    else:
        value = getattr(lead, attr, _ABSENT)

    if value is None:
        return _ABSENT
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _coerce_pair(field_value: Any, raw: Any) -> Optional[Tuple[Any, Any]]:
    """
    Bring the criterion value to the field's natural type.

    Returns None when the two cannot be compared.
    """
    try:
        if isinstance(field_value, bool):
            if isinstance(raw, bool):
                return field_value, raw
            return field_value, str(raw).strip().lower() in ("true", "1", "yes")

        if isinstance(field_value, datetime):
            left = ensure_utc(field_value)
            if isinstance(raw, datetime):
                return left, ensure_utc(raw)
            if isinstance(raw, date):
                return left.date(), raw
            text = str(raw).strip()
            if len(text) == 10:
                return left.date(), date.fromisoformat(text)
            return left, ensure_utc(datetime.fromisoformat(text))

        if isinstance(field_value, date):
            if isinstance(raw, datetime):
                return field_value, raw.date()
            if isinstance(raw, date):
                return field_value, raw
            return field_value, date.fromisoformat(str(raw).strip()[:10])

        if isinstance(field_value, (int, float)):
            return field_value, float(raw)

        return str(field_value), "" if raw is None else str(raw)
    except (TypeError, ValueError):
        return None


def _is_member(value: Any, options: List[str]) -> bool:
    """Dates compare per option in their natural type, like equals does."""
    if isinstance(value, (datetime, date)):
        for option in options:
            pair = _coerce_pair(value, option)
            if pair is not None and pair[0] == pair[1]:
                return True
        return False
    return str(value) in options


def _split_options(raw: Any) -> List[str]:
    """Comma-separated string (or list) -> trimmed, non-empty options."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set)):
        items = [str(item) for item in raw]
    else:
        items = str(raw).split(",")
    return [item.strip() for item in items if item.strip()]


def _evaluate(lead: Any, criterion: SegmentCriterion) -> bool:
    value = _field_value(lead, criterion.field)
    present = value is not _ABSENT
    op = criterion.operator

    if op == SegmentOperator.EXISTS:
        return present
    if op == SegmentOperator.NOT_EXISTS:
        return not present

    if op in (SegmentOperator.CONTAINS, SegmentOperator.NOT_CONTAINS):
        if not present or not isinstance(value, str):
            return False
        needle = "" if criterion.value is None else str(criterion.value).lower()
        found = needle in value.lower()
        return found if op == SegmentOperator.CONTAINS else not found

    if op in (SegmentOperator.IN, SegmentOperator.NOT_IN):
        member = present and _is_member(value, _split_options(criterion.value))
        return member if op == SegmentOperator.IN else not member

    if not present:
        return op == SegmentOperator.NOT_EQUALS

    pair = _coerce_pair(value, criterion.value)
    if pair is None:
        return op == SegmentOperator.NOT_EQUALS
    left, right = pair

    if op == SegmentOperator.EQUALS:
        return left == right
    if op == SegmentOperator.NOT_EQUALS:
        return left != right

    try:
        if op == SegmentOperator.GREATER_THAN:
            return left > right
        if op == SegmentOperator.LESS_THAN:
            return left < right
    except TypeError:
        return False

    return False


def _as_criterion(item: CriterionLike) -> Optional[SegmentCriterion]:
    if isinstance(item, SegmentCriterion):
        return item
    try:
        return SegmentCriterion.model_validate(item)
    except ValidationError as e:
        logger.warning(f"Malformed segment criterion {item!r}: {e.error_count()} error(s)")
        return None


def matches(lead: Any, criteria: Optional[Sequence[CriterionLike]]) -> bool:
    """
    Check whether a lead satisfies every criterion.

    Args:
        lead: Lead ORM instance or a mapping keyed by field name
        criteria: Ordered criteria (models or dicts)

    Returns:
        True if all criteria hold (vacuously true for an empty list).
        A malformed criterion never matches.
    """
    for item in criteria or []:
        criterion = _as_criterion(item)
        if criterion is None or not _evaluate(lead, criterion):
            return False
    return True


def unknown_fields(criteria: Iterable[SegmentCriterion]) -> List[str]:
    """Fields outside the vocabulary, in order of appearance."""
    seen: List[str] = []
    for criterion in criteria:
        if criterion.field not in KNOWN_FIELDS and criterion.field not in seen:
            seen.append(criterion.field)
    return seen


class SegmentationService:
    """Service for resolving campaign audiences from leads."""

    def __init__(self, db_session: Session):
        self.db = db_session

    # ----- audience resolution -----

    def get_audience(self, campaign: Campaign) -> List[Lead]:
        """
        Resolve the full target audience of a campaign.

        Args:
            campaign: Campaign whose audience descriptor is used

        Returns:
            Leads to send to. A static segment yields its frozen members,
            a dynamic segment or inline criteria yield every matching lead,
            no audience at all yields every lead.

        Raises:
            AudienceResolutionError: Referenced segment does not exist
        """
        audience = campaign.get_audience()

        if audience.segment_id is not None:
            segment = self.db.get(Segment, audience.segment_id)
            if segment is None:
                raise AudienceResolutionError(
                    f"Segment '{audience.segment_id}' referenced by campaign not found",
                    details={"segment_id": str(audience.segment_id)},
                )
            if segment.type == SegmentType.STATIC:
                return self.get_static_members(segment)
            criteria = segment.get_criteria()
        else:
            criteria = audience.criteria

        return self.find_matching_leads(criteria)

    def find_matching_leads(self, criteria: Sequence[CriterionLike]) -> List[Lead]:
        """Bulk-fetch all leads and keep the ones matching ``criteria``."""
        leads = list(self.db.execute(select(Lead)).scalars().all())
        if not criteria:
            return leads

        matched = [lead for lead in leads if matches(lead, criteria)]
        logger.info(f"Segment matched {len(matched)}/{len(leads)} leads")
        return matched

    def get_static_members(self, segment: Segment) -> List[Lead]:
        """Frozen membership snapshot of a static segment."""
        member_ids = [UUID(str(member)) for member in (segment.member_ids or [])]
        if not member_ids:
            return []
        query = select(Lead).where(Lead.id.in_(member_ids))
        return list(self.db.execute(query).scalars().all())

    def preview(self, criteria: Sequence[CriterionLike]) -> int:
        """Number of leads the criteria currently match."""
        return len(self.find_matching_leads(criteria))

    # ----- segment management -----

    def get_segment(self, segment_id: UUID) -> Segment:
        segment = self.db.get(Segment, segment_id)
        if segment is None:
            raise NotFoundError("Segment", segment_id)
        return segment

    def create_segment(
        self,
        name: str,
        criteria: Sequence[SegmentCriterion],
        segment_type: SegmentType = SegmentType.DYNAMIC,
        description: Optional[str] = None,
        member_ids: Optional[Sequence[UUID]] = None,
        created_by: Optional[str] = None,
    ) -> Segment:
        """
        Save a segment.

        Dynamic segments must only use known fields. A static segment
        without explicit members freezes whatever its criteria match now.

        Raises:
            SegmentValidationError: Unknown field in a dynamic segment
        """
        criteria = list(criteria)
        if segment_type == SegmentType.DYNAMIC:
            unknown = unknown_fields(criteria)
            if unknown:
                raise SegmentValidationError(
                    f"Unknown segment field(s): {', '.join(unknown)}",
                    details={"unknown_fields": unknown, "allowed": sorted(KNOWN_FIELDS)},
                )

        segment = Segment(
            name=name,
            description=description,
            type=segment_type,
            criteria=[c.model_dump(mode="json") for c in criteria],
            created_by=created_by,
        )

        if segment_type == SegmentType.STATIC:
            if member_ids is None:
                member_ids = [lead.id for lead in self.find_matching_leads(criteria)]
            segment.member_ids = [str(member) for member in member_ids]
            segment.lead_count = len(segment.member_ids)
        else:
            segment.lead_count = self.preview(criteria)

        self.db.add(segment)
        self.db.commit()

        logger.info(
            f"Segment saved (id: {segment.id}, type: {segment_type.value}, leads: {segment.lead_count})"
        )
        return segment

    def build_audience(self, segment_id: Optional[UUID], criteria: Sequence[SegmentCriterion]) -> Audience:
        """Audience descriptor for a campaign, checking the segment exists."""
        if segment_id is not None and self.db.get(Segment, segment_id) is None:
            raise AudienceResolutionError(
                f"Segment '{segment_id}' not found",
                details={"segment_id": str(segment_id)},
            )
        return Audience(segment_id=segment_id, criteria=list(criteria))
