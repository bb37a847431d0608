"""
Value objects nested inside the Campaign aggregate.

These are stored by value in JSON columns of the campaigns table and are
never mutated in place: services build a new copy and write the whole part
back in the same transaction as the rest of the aggregate.
"""
import enum
import re
from datetime import date
from typing import Any, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


SEND_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


def new_part_id(prefix: str) -> str:
    """Short random id for variants and funnel steps."""
    return f"{prefix}-{uuid4().hex[:10]}"


class Frequency(str, enum.Enum):
    """Campaign recurrence."""
    ONCE = "Once"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class SegmentOperator(str, enum.Enum):
    """Operators understood by the segment matcher."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class FunnelStepType(str, enum.Enum):
    """Kinds of funnel step."""
    EMAIL = "Email"
    SMS = "SMS"
    NOTIFICATION = "Notification"
    TASK = "Task"
    WAIT = "Wait"
    CONDITION = "Condition"


class PartModel(BaseModel):
    """Common config: tolerate unknown keys left by older writers."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Schedule(PartModel):
    """When and how often a campaign fires."""

    start_date: date
    end_date: Optional[date] = None
    frequency: Optional[Frequency] = None
    send_time: str = Field(..., description="Clock time HH:MM (24h)")
    timezone: Optional[str] = None

    @field_validator("send_time")
    @classmethod
    def _check_send_time(cls, value: str) -> str:
        if not SEND_TIME_PATTERN.match(value or ""):
            raise ValueError("Invalid time format. Use HH:MM format (24-hour)")
        return value

    @model_validator(mode="after")
    def _check_range(self) -> "Schedule":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self

    @property
    def send_hour(self) -> int:
        return int(self.send_time.split(":")[0])

    @property
    def send_minute(self) -> int:
        return int(self.send_time.split(":")[1])


class SegmentCriterion(PartModel):
    """One predicate of a segment: ``field operator value``."""

    field: str
    operator: SegmentOperator
    value: Any = None


class Audience(PartModel):
    """Either a saved segment reference or inline criteria."""

    segment_id: Optional[UUID] = None
    criteria: List[SegmentCriterion] = Field(default_factory=list)


class Content(PartModel):
    subject: str = ""
    body: str = ""
    template: Optional[str] = None

    @property
    def template_id(self) -> Optional[str]:
        if self.template and self.template != "none":
            return self.template
        return None


class VariantMetrics(PartModel):
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0


class Variant(PartModel):
    """One A/B alternative; ``allocation`` is an integer percentage."""

    id: str = Field(default_factory=lambda: new_part_id("variant"))
    name: str
    content: Content = Field(default_factory=Content)
    allocation: int = Field(..., ge=0, le=100)
    metrics: VariantMetrics = Field(default_factory=VariantMetrics)


class ABTest(PartModel):
    enabled: bool = False
    variants: List[Variant] = Field(default_factory=list)
    winning_variant: Optional[str] = None

    def find(self, variant_id: str) -> Optional[Variant]:
        return next((v for v in self.variants if v.id == variant_id), None)


class StepMetrics(PartModel):
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    converted: int = 0


class FunnelStep(PartModel):
    id: str = Field(default_factory=lambda: new_part_id("step"))
    name: str
    description: Optional[str] = None
    type: FunnelStepType
    content: Optional[str] = None
    condition: Optional[str] = None
    delay: int = Field(default=0, ge=0, description="Delay in hours, used by Wait steps")
    order: int = 0
    metrics: StepMetrics = Field(default_factory=StepMetrics)


class Funnel(PartModel):
    name: str = "Default Funnel"
    steps: List[FunnelStep] = Field(default_factory=list)

    def find(self, step_id: str) -> Optional[FunnelStep]:
        return next((s for s in self.steps if s.id == step_id), None)


class CampaignMetrics(PartModel):
    sent: int = 0
    failed: int = 0
    impressions: int = 0
    clicks: int = 0
    opens: int = 0
    conversions: int = 0
