"""
Campaign Scheduler Job - periodic evaluation of Scheduled campaigns.

Each tick walks every campaign in status Scheduled, one at a time:
1. Keep campaigns whose date range contains today (campaign timezone)
2. Keep time-window candidates: send hour == current hour and the send
   minute within the slack window of the current minute
3. Keep due campaigns according to frequency and last_sent_at
4. Claim the campaign (Scheduled -> Active, compare-and-set) and deliver
   Email campaigns to their audience
5. Finalize: Once -> Completed, everything else back to Scheduled

Any failure in steps 4-5 pauses that campaign with last_error set and the
tick moves on. The tick itself never raises.

Default schedule: every 60 minutes (configurable via TICK_INTERVAL_MINUTES)
"""
import asyncio
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.lib.clock import Clock, ensure_utc, get_clock, resolve_timezone
from src.lib.db import get_db_context
from src.lib.logging import get_logger, set_correlation_id
from src.lib.metrics import get_metrics_collector
from src.lib.settings import settings
from src.models.campaign_parts import Frequency, Schedule
from src.models.campaigns import Campaign, CampaignStatus, CampaignType
from src.models.jobs import JobType
from src.jobs.scheduler import with_advisory_lock
from src.services.campaign_delivery import CampaignDelivery
from src.services.errors import CampaignDeliveryError

logger = get_logger(__name__)

TICK_JOB_ID = "campaign_tick"

# Whole days that must pass since the last send; Monthly is a fixed 30 days
FREQUENCY_DAYS: Dict[Frequency, int] = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.MONTHLY: 30,
}


@dataclass
class CampaignOutcome:
    """What the tick did with one campaign."""
    campaign_id: str
    name: str
    status: str  # completed, rescheduled, paused, skipped
    error: Optional[str] = None
    sent: int = 0


@dataclass
class TickReport:
    """Summary of one tick."""
    correlation_id: str
    ran_at: datetime
    evaluated: int = 0
    fired: int = 0
    results: List[CampaignOutcome] = field(default_factory=list)

    @property
    def paused(self) -> int:
        return sum(1 for r in self.results if r.status == "paused")

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ran_at"] = self.ran_at.isoformat()
        data["paused"] = self.paused
        return data


def days_since(now: datetime, then: datetime) -> int:
    """Whole days elapsed between ``then`` and ``now``."""
    return (ensure_utc(now) - ensure_utc(then)) // timedelta(days=1)


def is_in_date_range(schedule: Schedule, today: date) -> bool:
    if schedule.start_date > today:
        return False
    return schedule.end_date is None or schedule.end_date >= today


def is_time_window_candidate(schedule: Schedule, local_now: datetime, slack_minutes: int) -> bool:
    """Scheduled hour matches and the minute is within the slack window."""
    return (
        schedule.send_hour == local_now.hour
        and abs(schedule.send_minute - local_now.minute) <= slack_minutes
    )


def is_due(frequency: Optional[Frequency], last_sent_at: Optional[datetime], now: datetime) -> bool:
    """
    Decide due-ness from the recurrence rule.

    Args:
        frequency: Campaign frequency (None/unknown is never due)
        last_sent_at: Last send, None if never sent
        now: Tick time

    Returns:
        True if the campaign should fire at this tick
    """
    if frequency == Frequency.ONCE:
        return last_sent_at is None

    threshold = FREQUENCY_DAYS.get(frequency)
    if threshold is None:
        return False
    if last_sent_at is None:
        return True
    return days_since(now, last_sent_at) >= threshold


class CampaignScheduler:
    """Runs the campaign tick against one database session."""

    def __init__(
        self,
        db: Session,
        delivery: Optional[CampaignDelivery] = None,
        clock: Optional[Clock] = None,
        slack_minutes: Optional[int] = None,
    ):
        self.db = db
        self.delivery = delivery or CampaignDelivery(db)
        self.clock = clock or get_clock()
        self.slack_minutes = settings.send_window_slack_minutes if slack_minutes is None else slack_minutes
        self.metrics = get_metrics_collector()

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Evaluate all Scheduled campaigns once.

        Args:
            now: Tick time (defaults to the injected clock)

        Returns:
            TickReport; per-campaign failures are reported, never raised
        """
        now = ensure_utc(now or self.clock.now())
        correlation_id = str(uuid4())
        set_correlation_id(correlation_id)
        report = TickReport(correlation_id=correlation_id, ran_at=now)

        try:
            campaigns = list(
                self.db.execute(
                    select(Campaign)
                    .where(Campaign.status == CampaignStatus.SCHEDULED)
                    .order_by(Campaign.created_at)
                ).scalars().all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Campaign tick could not load campaigns: {e}", exc_info=True)
            return report

        logger.info(f"Campaign tick started: {len(campaigns)} scheduled campaign(s)")

        for campaign in campaigns:
            report.evaluated += 1
            schedule = self._due_schedule(campaign, now)
            if schedule is None:
                continue

            report.fired += 1
            outcome = await self._fire(campaign, schedule, now)
            report.results.append(outcome)
            self.metrics.increment_campaign_runs(outcome.status)

        logger.info(
            f"Campaign tick finished: {report.evaluated} evaluated, "
            f"{report.fired} fired, {report.paused} paused"
        )
        return report

    def _due_schedule(self, campaign: Campaign, now: datetime) -> Optional[Schedule]:
        """Parsed schedule if the campaign should fire now, else None."""
        try:
            schedule = campaign.get_schedule()
        except ValidationError as e:
            logger.warning(
                f"Skipping campaign with malformed schedule: {e.error_count()} error(s)",
                extra={"campaign_id": str(campaign.id)},
            )
            return None
        if schedule is None:
            return None

        local_now = now.astimezone(resolve_timezone(schedule.timezone, settings.scheduler_timezone))
        if not is_in_date_range(schedule, local_now.date()):
            return None
        if not is_time_window_candidate(schedule, local_now, self.slack_minutes):
            return None
        if not is_due(schedule.frequency, campaign.last_sent_at, now):
            return None
        return schedule

    def _claim(self, campaign: Campaign, now: datetime) -> bool:
        """Scheduled -> Active with last_sent_at = now, only if still Scheduled."""
        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign.id, Campaign.status == CampaignStatus.SCHEDULED)
            .values(status=CampaignStatus.ACTIVE, last_sent_at=now)
        )
        self.db.commit()
        return result.rowcount == 1

    async def _fire(self, campaign: Campaign, schedule: Schedule, now: datetime) -> CampaignOutcome:
        outcome = CampaignOutcome(campaign_id=str(campaign.id), name=campaign.name, status="skipped")
        log_extra = {"campaign_id": outcome.campaign_id}

        try:
            if not self._claim(campaign, now):
                logger.info("Campaign claimed by another run, skipping", extra=log_extra)
                return outcome
            self.db.refresh(campaign)

            if campaign.type == CampaignType.EMAIL:
                delivery = await self.delivery.deliver(campaign)
                outcome.sent = delivery.sent

            if schedule.frequency == Frequency.ONCE:
                campaign.status = CampaignStatus.COMPLETED
                outcome.status = "completed"
            else:
                campaign.status = CampaignStatus.SCHEDULED
                outcome.status = "rescheduled"
            campaign.last_error = None
            self.db.commit()

        except CampaignDeliveryError as e:
            self._pause(campaign, str(e), outcome)
        except Exception as e:
            logger.error(f"Campaign run failed: {e}", extra=log_extra, exc_info=True)
            self.db.rollback()
            self._pause(campaign, str(e), outcome)

        logger.info(f"Campaign {outcome.status}", extra={**log_extra, "sent": outcome.sent})
        return outcome

    def _pause(self, campaign: Campaign, error: str, outcome: CampaignOutcome) -> None:
        outcome.status = "paused"
        outcome.error = error
        try:
            campaign.status = CampaignStatus.PAUSED
            campaign.last_error = error
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Could not record pause: {e}",
                extra={"campaign_id": outcome.campaign_id},
            )


# ============================================================================
# Job entry points
# ============================================================================


@with_advisory_lock(TICK_JOB_ID, JobType.CAMPAIGN_TICK)
async def run_campaign_tick() -> Dict[str, Any]:
    """
    Run one campaign tick in its own session.

    Returns:
        TickReport as a dictionary (stored on the job record)
    """
    with get_db_context() as db:
        report = await CampaignScheduler(db).tick()
    return report.as_dict()


def run_campaign_tick_sync():
    """
    Synchronous wrapper for APScheduler compatibility.

    APScheduler expects synchronous functions, so this wrapper
    creates an event loop and runs the async tick.
    """
    return asyncio.run(run_campaign_tick())


def register_campaign_jobs(scheduler_manager):
    """
    Register the campaign tick with the scheduler.

    Args:
        scheduler_manager: SchedulerManager instance from get_scheduler()

    Example:
        scheduler = get_scheduler()
        register_campaign_jobs(scheduler)
        scheduler.start()
    """
    scheduler_manager.add_interval_job(
        func=run_campaign_tick_sync,
        job_id=TICK_JOB_ID,
        minutes=settings.tick_interval_minutes,
    )
    logger.info(f"Campaign tick registered (every {settings.tick_interval_minutes} min)")
