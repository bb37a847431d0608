"""
Campaign service: lifecycle, scheduling and aggregate edits.

Every operation loads the campaign, computes new value parts (schedule,
A/B test, funnel) and writes the aggregate back in one commit. Allocation
and funnel arithmetic is delegated to the balancer and sequencer modules;
sending is delegated to CampaignDelivery.
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from src.lib.clock import Clock, get_clock
from src.lib.logging import get_logger
from src.lib.settings import settings
from src.models.campaign_parts import (
    ABTest,
    Audience,
    CampaignMetrics,
    Content,
    Funnel,
    FunnelStep,
    Schedule,
    StepMetrics,
    VariantMetrics,
)
from src.models.campaigns import Campaign, CampaignStatus, CampaignType
from src.services import allocation_balancer as balancer
from src.services import funnel_sequencer as sequencer
from src.services.campaign_delivery import CampaignDelivery
from src.services.errors import (
    AllocationError,
    DomainError,
    FunnelError,
    InvalidTransitionError,
    NotFoundError,
    ScheduleValidationError,
)
from src.services.mail_service import MailResult
from src.services.notification_service import NotificationService

logger = get_logger(__name__)


# Allowed status changes; Paused -> Active/Scheduled is the reactivation path,
# Paused -> Completed finishes a campaign without sending again
VALID_TRANSITIONS: Dict[CampaignStatus, frozenset] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.SCHEDULED, CampaignStatus.CANCELLED}),
    CampaignStatus.SCHEDULED: frozenset({
        CampaignStatus.ACTIVE,
        CampaignStatus.PAUSED,
        CampaignStatus.CANCELLED,
    }),
    CampaignStatus.ACTIVE: frozenset({
        CampaignStatus.SCHEDULED,
        CampaignStatus.PAUSED,
        CampaignStatus.COMPLETED,
        CampaignStatus.CANCELLED,
    }),
    CampaignStatus.PAUSED: frozenset({
        CampaignStatus.ACTIVE,
        CampaignStatus.SCHEDULED,
        CampaignStatus.COMPLETED,
        CampaignStatus.CANCELLED,
    }),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.CANCELLED: frozenset(),
}


def can_transition(current: CampaignStatus, target: CampaignStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def _validation_message(error: ValidationError) -> str:
    return "; ".join(err["msg"].removeprefix("Value error, ") for err in error.errors())


class CampaignService:
    """Campaign operations exposed to the API."""

    def __init__(
        self,
        db: Session,
        delivery: Optional[CampaignDelivery] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.delivery = delivery or CampaignDelivery(db)
        self.clock = clock or get_clock()

    # ----- lifecycle -----

    def get_campaign(self, campaign_id: UUID) -> Campaign:
        campaign = self.db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)
        return campaign

    def create_campaign(
        self,
        name: str,
        type: CampaignType,
        description: Optional[str] = None,
        content: Optional[Content] = None,
        audience: Optional[Audience] = None,
        tags: Optional[List[str]] = None,
        created_by: Optional[str] = None,
    ) -> Campaign:
        """
        Create a Draft campaign and notify marketing staff.

        Notification failures are logged and never fail the creation.
        """
        campaign = Campaign(
            name=name,
            type=type,
            description=description,
            status=CampaignStatus.DRAFT,
            content=(content or Content()).model_dump(mode="json"),
            audience=(audience or Audience()).model_dump(mode="json"),
            ab_test=ABTest().model_dump(mode="json"),
            funnel=Funnel().model_dump(mode="json"),
            metrics=CampaignMetrics().model_dump(mode="json"),
            tags=list(tags or []),
            created_by=created_by,
        )
        self.db.add(campaign)
        self.db.commit()

        logger.info(f"Campaign created: {name}", extra={"campaign_id": str(campaign.id)})

        NotificationService(self.db).notify_roles(
            settings.campaign_notify_roles,
            type="campaign",
            title="New Campaign Created",
            message=f'A new {type.value} campaign "{name}" has been created',
        )
        return campaign

    def duplicate_campaign(self, campaign_id: UUID) -> Campaign:
        """Draft copy with a "(Copy)" name suffix and fresh delivery state."""
        source = self.get_campaign(campaign_id)

        ab_test = source.get_ab_test()
        for variant in ab_test.variants:
            variant.metrics = VariantMetrics()
        ab_test.winning_variant = None

        funnel = source.get_funnel()
        for step in funnel.steps:
            step.metrics = StepMetrics()

        copy = Campaign(
            name=f"{source.name} (Copy)",
            description=source.description,
            type=source.type,
            status=CampaignStatus.DRAFT,
            schedule=source.schedule,
            audience=source.audience,
            content=source.content,
            ab_test=ab_test.model_dump(mode="json"),
            funnel=funnel.model_dump(mode="json"),
            metrics=CampaignMetrics().model_dump(mode="json"),
            tags=list(source.tags or []),
            created_by=source.created_by,
        )
        self.db.add(copy)
        self.db.commit()

        logger.info(
            "Campaign duplicated",
            extra={"campaign_id": str(copy.id), "source_id": str(source.id)},
        )
        return copy

    def update_content(
        self,
        campaign_id: UUID,
        content: Optional[Content] = None,
        audience: Optional[Audience] = None,
    ) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        if content is not None:
            campaign.content = content.model_dump(mode="json")
        if audience is not None:
            campaign.set_audience(audience)
        self.db.commit()
        return campaign

    # ----- scheduling & status -----

    def schedule_campaign(self, campaign_id: UUID, schedule: Mapping[str, Any]) -> Campaign:
        """
        Attach a schedule and move the campaign to Scheduled.

        Args:
            campaign_id: Campaign id
            schedule: start_date, end_date, frequency, send_time, timezone

        Raises:
            ScheduleValidationError: Missing start date/time, bad formats, end before start
            InvalidTransitionError: Campaign cannot be (re)scheduled from its status
        """
        if not schedule.get("start_date") or not schedule.get("send_time"):
            raise ScheduleValidationError("Start date and time are required")

        try:
            parsed = Schedule.model_validate(dict(schedule))
        except ValidationError as e:
            raise ScheduleValidationError(_validation_message(e), details={"errors": e.error_count()})

        campaign = self.get_campaign(campaign_id)
        if campaign.status != CampaignStatus.SCHEDULED and not can_transition(
            campaign.status, CampaignStatus.SCHEDULED
        ):
            raise InvalidTransitionError(
                f"Cannot schedule a {campaign.status.value} campaign",
                details={"status": campaign.status.value},
            )

        campaign.set_schedule(parsed)
        campaign.status = CampaignStatus.SCHEDULED
        campaign.last_error = None
        self.db.commit()

        logger.info(
            f"Campaign scheduled for {parsed.start_date} {parsed.send_time}",
            extra={"campaign_id": str(campaign.id), "frequency": parsed.frequency},
        )
        return campaign

    async def update_campaign_status(self, campaign_id: UUID, status: CampaignStatus) -> Campaign:
        """
        Change a campaign's status.

        Moving to Active sends the campaign now, with the same audience and
        failure rules as the scheduler tick; a failed send leaves the
        campaign Paused with ``last_error`` set instead of raising.
        """
        campaign = self.get_campaign(campaign_id)
        if not can_transition(campaign.status, status):
            raise InvalidTransitionError(
                f"Cannot move campaign from {campaign.status.value} to {status.value}",
                details={"from": campaign.status.value, "to": status.value},
            )

        if status == CampaignStatus.SCHEDULED and campaign.get_schedule() is None:
            raise ScheduleValidationError("Campaign has no schedule")

        if status != CampaignStatus.ACTIVE:
            campaign.status = status
            self.db.commit()
            logger.info(f"Campaign status set to {status.value}", extra={"campaign_id": str(campaign.id)})
            return campaign

        # Same compare-and-set as the tick claim so a concurrent run cannot send twice
        loaded_status = campaign.status
        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign.id, Campaign.status == loaded_status)
            .values(status=CampaignStatus.ACTIVE, last_sent_at=self.clock.now(), last_error=None)
        )
        self.db.commit()
        self.db.refresh(campaign)
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Campaign changed from {loaded_status.value} to {campaign.status.value} while activating",
                details={"from": loaded_status.value, "to": status.value, "current": campaign.status.value},
            )

        if campaign.type != CampaignType.EMAIL:
            return campaign

        try:
            await self.delivery.deliver(campaign)
        except Exception as e:
            # Surfaced through last_error, same as a failed tick
            logger.error(f"Manual send failed: {e}", extra={"campaign_id": str(campaign.id)})
            if not isinstance(e, DomainError):
                self.db.rollback()
            campaign.status = CampaignStatus.PAUSED
            campaign.last_error = str(e)

        self.db.commit()
        return campaign

    # ----- A/B testing -----

    def _save_ab_test(self, campaign: Campaign, ab_test: ABTest) -> Campaign:
        campaign.set_ab_test(ab_test)
        self.db.commit()
        return campaign

    def _require_variant(self, ab_test: ABTest, variant_id: str) -> None:
        if ab_test.find(variant_id) is None:
            raise NotFoundError("Variant", variant_id)

    def set_ab_test_enabled(self, campaign_id: UUID, enabled: bool) -> Campaign:
        """Toggle A/B testing; enabling an empty test seeds a 50/50 pair."""
        campaign = self.get_campaign(campaign_id)
        ab_test = campaign.get_ab_test()
        ab_test.enabled = enabled
        if enabled and len(ab_test.variants) < 2:
            ab_test.variants = balancer.default_variants(campaign.get_content())
            ab_test.winning_variant = None
        return self._save_ab_test(campaign, ab_test)

    def add_variant(self, campaign_id: UUID, name: Optional[str] = None, content: Optional[Content] = None) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        ab_test = campaign.get_ab_test()
        if not balancer.can_add_variant(ab_test):
            raise AllocationError(
                f"You can have a maximum of {settings.max_variants} variants in an A/B test"
            )
        return self._save_ab_test(campaign, balancer.add_variant(ab_test, name, content))

    def remove_variant(self, campaign_id: UUID, variant_id: str) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        ab_test = campaign.get_ab_test()
        self._require_variant(ab_test, variant_id)
        if not balancer.can_remove_variant(ab_test):
            raise AllocationError("You need at least 2 variants for an A/B test")
        return self._save_ab_test(campaign, balancer.remove_variant(ab_test, variant_id))

    def set_variant_allocation(self, campaign_id: UUID, variant_id: str, allocation: int) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        ab_test = campaign.get_ab_test()
        self._require_variant(ab_test, variant_id)
        ab_test.variants = balancer.rebalance(ab_test.variants, variant_id, allocation)
        return self._save_ab_test(campaign, ab_test)

    def update_variant_content(self, campaign_id: UUID, variant_id: str, name: Optional[str], content: Content) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        ab_test = campaign.get_ab_test()
        self._require_variant(ab_test, variant_id)
        variant = ab_test.find(variant_id)
        variant.content = content
        if name:
            variant.name = name
        return self._save_ab_test(campaign, ab_test)

    def declare_winner(self, campaign_id: UUID, variant_id: str) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        ab_test = campaign.get_ab_test()
        self._require_variant(ab_test, variant_id)
        logger.info(f"Variant {variant_id} declared winner", extra={"campaign_id": str(campaign.id)})
        return self._save_ab_test(campaign, balancer.declare_winner(ab_test, variant_id))

    # ----- funnel -----

    def _save_funnel(self, campaign: Campaign, funnel: Funnel) -> Campaign:
        campaign.set_funnel(funnel)
        self.db.commit()
        return campaign

    def _require_step(self, funnel: Funnel, step_id: str) -> None:
        if funnel.find(step_id) is None:
            raise NotFoundError("Funnel step", step_id)

    def add_funnel_step(self, campaign_id: UUID, step: FunnelStep) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        return self._save_funnel(campaign, sequencer.add_step(campaign.get_funnel(), step))

    def update_funnel_step(self, campaign_id: UUID, step_id: str, changes: Mapping[str, Any]) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        funnel = campaign.get_funnel()
        self._require_step(funnel, step_id)
        try:
            updated = sequencer.update_step(funnel, step_id, changes)
        except ValidationError as e:
            raise FunnelError(_validation_message(e))
        return self._save_funnel(campaign, updated)

    def remove_funnel_step(self, campaign_id: UUID, step_id: str) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        funnel = campaign.get_funnel()
        self._require_step(funnel, step_id)
        return self._save_funnel(campaign, sequencer.remove_step(funnel, step_id))

    def reorder_funnel(self, campaign_id: UUID, ordered_ids: Sequence[str]) -> Campaign:
        campaign = self.get_campaign(campaign_id)
        funnel = campaign.get_funnel()
        if not sequencer.is_valid_reorder(funnel, ordered_ids):
            raise FunnelError(
                "Reorder must list every funnel step exactly once",
                details={"expected": len(funnel.steps), "received": len(ordered_ids)},
            )
        return self._save_funnel(campaign, sequencer.reorder(funnel, ordered_ids))

    async def run_funnel_step(self, campaign_id: UUID, step_id: str) -> Optional[FunnelStep]:
        """
        Execute one funnel step now.

        Step metrics are committed even when some recipients fail; the
        delivery error is then re-raised to the caller.

        Returns:
            Next step in the funnel, or None
        """
        campaign = self.get_campaign(campaign_id)
        self._require_step(campaign.get_funnel(), step_id)
        try:
            return await self.delivery.deliver_funnel_step(campaign, step_id)
        finally:
            self.db.commit()

    # ----- test send -----

    async def test_send(self, campaign_id: UUID, address: str) -> MailResult:
        campaign = self.get_campaign(campaign_id)
        return await self.delivery.send_test(campaign, address)
