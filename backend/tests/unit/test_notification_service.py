"""
Unit tests for NotificationService.
"""
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from src.models.notifications import Notification
from src.models.users import User
from src.services.notification_service import NotificationService


@pytest.fixture
def staff(db_session):
    users = [
        User(email="marketing@example.com", role="Marketing"),
        User(email="admin@example.com", role="Admin"),
        User(email="former@example.com", role="Marketing", is_active=False),
        User(email="sales@example.com", role="Sales"),
    ]
    db_session.add_all(users)
    db_session.commit()
    return users


@pytest.mark.unit
def test_notify_stores_notification(db_session):
    """Test a single notification is stored unread."""
    user_id = uuid4()

    stored = NotificationService(db_session).notify(user_id, "campaign", "Campaign paused", "Spring intake paused")

    assert stored is True
    notification = db_session.query(Notification).one()
    assert notification.user_id == user_id
    assert notification.type == "campaign"
    assert notification.title == "Campaign paused"
    assert notification.read is False


@pytest.mark.unit
def test_notify_roles_targets_active_users(db_session, staff):
    """Test only active users in the given roles are notified."""
    stored = NotificationService(db_session).notify_roles(
        ["Marketing", "Admin"], "campaign", "New campaign", "Spring intake created"
    )

    assert stored == 2
    recipients = {n.user_id for n in db_session.query(Notification).all()}
    assert recipients == {staff[0].id, staff[1].id}


@pytest.mark.unit
def test_notify_roles_with_no_users(db_session):
    """Test no notifications are stored when nobody holds the role."""
    stored = NotificationService(db_session).notify_roles(["Marketing"], "campaign", "t", "m")

    assert stored == 0
    assert db_session.query(Notification).count() == 0


@pytest.mark.unit
def test_notify_write_failure_is_not_raised(mock_db_session):
    """Test a failed write is logged and reported as False."""
    mock_db_session.commit.side_effect = SQLAlchemyError("database is locked")

    stored = NotificationService(mock_db_session).notify(uuid4(), "campaign", "t", "m")

    assert stored is False
    mock_db_session.rollback.assert_called_once()


@pytest.mark.unit
def test_notify_roles_lookup_failure_is_not_raised(mock_db_session):
    """Test a failed user lookup notifies nobody."""
    mock_db_session.execute.side_effect = SQLAlchemyError("connection lost")

    stored = NotificationService(mock_db_session).notify_roles(["Admin"], "campaign", "t", "m")

    assert stored == 0
    mock_db_session.add.assert_not_called()
