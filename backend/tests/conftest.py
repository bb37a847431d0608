"""
Shared fixtures.

Database tests run against an in-memory SQLite database with the full
model metadata; JSON parts fall back to plain JSON there.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import src.models  # noqa: F401  registers every table on Base.metadata
from src.lib.db import Base
from src.lib.metrics import reset_metrics
from src.models.campaign_parts import Schedule
from src.models.campaigns import Campaign, CampaignStatus, CampaignType
from src.models.leads import Lead
from src.services.campaign_delivery import CampaignDelivery
from src.services.mail_service import MailProvider, MailResult, MailService


class FixedClock:
    """Clock that stays where the test puts it."""

    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now


class RecordingMailProvider(MailProvider):
    """Mail provider that records sends and fails for chosen addresses."""

    def __init__(self, fail_for: Optional[Set[str]] = None, raise_for: Optional[Set[str]] = None):
        self.sent: List[Dict[str, str]] = []
        self.fail_for = set(fail_for or ())
        self.raise_for = set(raise_for or ())

    async def send(self, to: str, subject: str, html_body: str) -> MailResult:
        if to in self.raise_for:
            raise ConnectionError(f"connection reset sending to {to}")
        if to in self.fail_for:
            return MailResult(success=False, error="mailbox unavailable")
        self.sent.append({"to": to, "subject": subject, "body": html_body})
        return MailResult(success=True, message_id=f"<{len(self.sent)}@test>")

    @property
    def recipients(self) -> List[str]:
        return [item["to"] for item in self.sent]


@pytest.fixture(autouse=True)
def clear_metrics():
    """Every test starts with empty counters."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    factory = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)
    session = factory()
    yield session
    session.close()


@pytest.fixture
def mock_db_session():
    """Bare mock for code paths that never reach the database."""
    return MagicMock(spec=Session)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 10, 8, 3, tzinfo=timezone.utc))


@pytest.fixture
def mail_provider():
    return RecordingMailProvider()


@pytest.fixture
def delivery(db_session, mail_provider):
    return CampaignDelivery(db_session, mail=MailService(provider=mail_provider, db=db_session))


@pytest.fixture
def make_delivery(db_session):
    """Factory for a delivery whose provider fails (or raises) for chosen addresses."""

    def _make(fail_for: Optional[Set[str]] = None, raise_for: Optional[Set[str]] = None):
        provider = RecordingMailProvider(fail_for=fail_for, raise_for=raise_for)
        mail = MailService(provider=provider, db=db_session)
        return CampaignDelivery(db_session, mail=mail), provider

    return _make


@pytest.fixture
def make_lead(db_session):
    """Factory for persisted leads."""

    def _make(name: str = "Abebe Kebede", email: Optional[str] = "abebe@example.com", **fields) -> Lead:
        lead = Lead(name=name, email=email, **fields)
        db_session.add(lead)
        db_session.commit()
        return lead

    return _make


@pytest.fixture
def make_campaign(db_session):
    """Factory for persisted campaigns; ``schedule`` may be a dict or None."""

    def _make(
        name: str = "Spring intake",
        type: CampaignType = CampaignType.EMAIL,
        status: CampaignStatus = CampaignStatus.SCHEDULED,
        schedule: Optional[dict] = None,
        content: Optional[dict] = None,
        **fields,
    ) -> Campaign:
        campaign = Campaign(
            name=name,
            type=type,
            status=status,
            content=content or {"subject": "Hello {{firstName}}", "body": "<p>Welcome {{name}}</p>"},
            **fields,
        )
        if schedule is not None:
            campaign.schedule = Schedule.model_validate(schedule).model_dump(mode="json")
        db_session.add(campaign)
        db_session.commit()
        return campaign

    return _make
