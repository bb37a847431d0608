"""
Campaign delivery: audience + content + per-recipient dispatch.

Used by the scheduler tick, manual activation, funnel step runs and test
sends, so every path applies the same audience and failure rules:
- Audience comes from the segmentation service
- Content is the campaign's own, or its template's when one is referenced
- A/B campaigns swap in the recipient's variant content
- Every recipient is attempted; failures are collected and raised together
  as one CampaignDeliveryError after the loop
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from src.lib.logging import get_logger
from src.lib.metrics import get_metrics_collector
from src.lib.templating import extract_variables, generate_test_email, parse_template
from src.models.campaign_parts import ABTest, Content, FunnelStep, FunnelStepType
from src.models.campaigns import Campaign, CampaignType
from src.models.email_templates import EmailTemplate
from src.models.leads import Lead
from src.services.allocation_balancer import pick_variant
from src.services.errors import CampaignDeliveryError, DomainError, FunnelError
from src.services.funnel_sequencer import next_step
from src.services.mail_service import MailResult, MailService
from src.services.segmentation_service import SegmentationService

logger = get_logger(__name__)

TEST_SUBJECT_PREFIX = "[TEST] "
DISPATCHED_STEP_TYPES = frozenset({FunnelStepType.EMAIL, FunnelStepType.SMS})

# Failure details kept on the error; the full count is always reported
_MAX_FAILURE_DETAILS = 20


@dataclass
class DeliveryReport:
    """Outcome of one delivery run."""
    campaign_id: UUID
    attempted: int = 0
    sent: int = 0
    skipped: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def summary(self) -> str:
        return (
            f"{self.failed} of {self.attempted} recipient(s) failed: "
            + "; ".join(self.failures[:3])
            + ("; ..." if self.failed > 3 else "")
        )


def lead_variables(lead: Lead) -> Dict[str, object]:
    """Placeholder values available to campaign content for one lead."""
    name = lead.name or ""
    return {
        "name": name,
        "firstName": name.split()[0] if name.split() else "",
        "email": lead.email or "",
        "source": lead.source or "",
        "courseOfInterest": lead.course_of_interest or "",
        "pipeline": lead.pipeline.value if lead.pipeline else "",
        "status": lead.status.value if lead.status else "",
    }


class CampaignDelivery:
    """Sends a campaign (or one funnel step) to its resolved audience."""

    def __init__(
        self,
        db: Session,
        mail: Optional[MailService] = None,
        segmentation: Optional[SegmentationService] = None,
    ):
        self.db = db
        self.mail = mail or MailService(db=db)
        self.segmentation = segmentation or SegmentationService(db)
        self.metrics = get_metrics_collector()

    # ----- content -----

    def _find_template(self, template_id: str) -> Optional[EmailTemplate]:
        try:
            key = UUID(str(template_id))
        except ValueError:
            return None
        return self.db.get(EmailTemplate, key)

    def resolve_content(self, campaign: Campaign) -> Content:
        """
        Subject/body to send.

        A referenced template wins; a missing template falls back to the
        campaign's own subject and body.
        """
        content = campaign.get_content()
        template_id = content.template_id
        if template_id is None:
            return content

        template = self._find_template(template_id)
        if template is None:
            logger.warning(
                f"Template '{template_id}' not found, using campaign content",
                extra={"campaign_id": str(campaign.id)},
            )
            return content

        return Content(subject=template.subject, body=template.body, template=content.template)

    @staticmethod
    def _variant_content(base: Content, ab_test: ABTest, lead: Lead, campaign_id: UUID):
        variant = pick_variant(ab_test, str(lead.id), str(campaign_id))
        if variant is None:
            return base, None
        return (
            Content(
                subject=variant.content.subject or base.subject,
                body=variant.content.body or base.body,
            ),
            variant,
        )

    # ----- dispatch -----

    async def _dispatch(self, report: DeliveryReport, address: str, subject: str, body: str) -> bool:
        report.attempted += 1
        try:
            result: MailResult = await self.mail.send(address, subject, body)
        except Exception as e:
            # Collected and re-raised as CampaignDeliveryError after the loop
            logger.error(f"Dispatch raised for {address}: {e}", extra={"campaign_id": str(report.campaign_id)})
            report.failures.append(f"{address}: {e}")
            return False

        if not result.success:
            report.failures.append(f"{address}: {result.error or 'send failed'}")
            return False

        report.sent += 1
        return True

    def _raise_if_failed(self, report: DeliveryReport) -> None:
        if not report.failures:
            return
        raise CampaignDeliveryError(
            report.summary(),
            details={
                "campaign_id": str(report.campaign_id),
                "attempted": report.attempted,
                "failed": report.failed,
                "failures": report.failures[:_MAX_FAILURE_DETAILS],
            },
        )

    async def deliver(self, campaign: Campaign) -> DeliveryReport:
        """
        Send the campaign once to every audience member with an email.

        Campaign and variant metrics are updated on the instance (the caller
        commits). Raises CampaignDeliveryError after the loop if any
        recipient failed.
        """
        audience = self.segmentation.get_audience(campaign)
        base = self.resolve_content(campaign)
        ab_test = campaign.get_ab_test()
        impressions: Counter = Counter()
        report = DeliveryReport(campaign_id=campaign.id)

        logger.info(
            f"Delivering campaign to {len(audience)} lead(s)",
            extra={"campaign_id": str(campaign.id), "ab_test": ab_test.enabled},
        )

        for lead in audience:
            if not lead.email:
                report.skipped += 1
                continue

            content, variant = self._variant_content(base, ab_test, lead, campaign.id)
            variables = lead_variables(lead)
            delivered = await self._dispatch(
                report,
                lead.email,
                parse_template(content.subject, variables),
                parse_template(content.body, variables),
            )
            if delivered and variant is not None:
                impressions[variant.id] += 1

        self._record(campaign, report, ab_test, impressions)
        self._raise_if_failed(report)
        return report

    def _record(self, campaign: Campaign, report: DeliveryReport, ab_test: ABTest, impressions: Counter) -> None:
        metrics = campaign.get_metrics()
        metrics.sent += report.sent
        metrics.failed += report.failed
        metrics.impressions += sum(impressions.values())
        campaign.set_metrics(metrics)

        if impressions:
            for variant in ab_test.variants:
                variant.metrics.impressions += impressions.get(variant.id, 0)
            campaign.set_ab_test(ab_test)

        self.metrics.increment_emails("sent", report.sent)
        self.metrics.increment_emails("failed", report.failed)
        self.metrics.increment_emails("skipped", report.skipped)

        logger.info(
            f"Delivery finished: {report.sent} sent, {report.failed} failed, {report.skipped} skipped",
            extra={"campaign_id": str(campaign.id)},
        )

    # ----- funnel steps -----

    async def deliver_funnel_step(self, campaign: Campaign, step_id: str) -> Optional[FunnelStep]:
        """
        Execute one funnel step.

        Email and SMS steps are dispatched to the campaign audience through
        the mail dispatcher; Notification, Task, Wait and Condition steps are
        only recorded.

        Returns:
            The step that follows, or None at the end of the funnel
        """
        funnel = campaign.get_funnel()
        step = funnel.find(step_id)
        if step is None:
            raise FunnelError(f"Funnel step '{step_id}' not found", details={"step_id": step_id})

        report = DeliveryReport(campaign_id=campaign.id)
        if step.type in DISPATCHED_STEP_TYPES:
            subject = step.name
            for lead in self.segmentation.get_audience(campaign):
                if not lead.email:
                    report.skipped += 1
                    continue
                variables = lead_variables(lead)
                await self._dispatch(
                    report,
                    lead.email,
                    parse_template(subject, variables),
                    parse_template(step.content or "", variables),
                )
            step.metrics.sent += report.attempted
            step.metrics.delivered += report.sent
        else:
            logger.info(
                f"Funnel step '{step.name}' ({step.type.value}) recorded without dispatch",
                extra={"campaign_id": str(campaign.id), "step_id": step.id},
            )

        campaign.set_funnel(funnel)
        self.metrics.increment_funnel_steps(step.type.value)
        self._raise_if_failed(report)
        return next_step(funnel, step.id)

    # ----- test send -----

    async def send_test(self, campaign: Campaign, address: str) -> MailResult:
        """
        Send the campaign's content to a single address with a ``[TEST] `` subject.

        Placeholders are filled with ``[Sample name]`` values.
        """
        if campaign.type != CampaignType.EMAIL:
            raise DomainError(
                "Test sends are only available for Email campaigns",
                details={"campaign_id": str(campaign.id), "type": campaign.type.value},
            )

        content = self.resolve_content(campaign)
        names = extract_variables(content.subject) + extract_variables(content.body)
        subject = TEST_SUBJECT_PREFIX + generate_test_email(content.subject, names)
        body = generate_test_email(content.body, names)

        report = DeliveryReport(campaign_id=campaign.id)
        await self._dispatch(report, address, subject, body)
        self._raise_if_failed(report)

        logger.info("Test email sent", extra={"campaign_id": str(campaign.id), "to": address})
        return MailResult(success=True)
