"""
In-app notification sink.

Notifications are rows in the notifications table that the CRM shows to
staff. The sink is fire-and-forget: failures are logged, never raised, so
a broken notification never blocks the operation that triggered it.
"""
from typing import Iterable, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.lib.logging import get_logger
from src.models.notifications import Notification
from src.models.users import User

logger = get_logger(__name__)


class NotificationService:
    """Records notifications for CRM users."""

    def __init__(self, db: Session):
        self.db = db

    def notify(self, user_id: UUID, type: str, title: str, message: str) -> bool:
        """
        Create one notification.

        Args:
            user_id: Recipient user
            type: Notification category (e.g. "campaign")
            title: Short title
            message: Body text

        Returns:
            True if stored, False if the write failed
        """
        try:
            self.db.add(Notification(user_id=user_id, type=type, title=title, message=message))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store notification: {e}", extra={"user_id": str(user_id)})
            return False

        logger.info("Notification stored", extra={"user_id": str(user_id), "type": type})
        return True

    def notify_roles(self, roles: Iterable[str], type: str, title: str, message: str) -> int:
        """
        Notify every active user holding one of ``roles``.

        Returns:
            Number of notifications stored
        """
        roles = list(roles)
        try:
            users: List[User] = list(
                self.db.execute(
                    select(User).where(User.role.in_(roles), User.is_active.is_(True))
                ).scalars().all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up users for roles {roles}: {e}")
            return 0

        stored = 0
        for user in users:
            if self.notify(user.id, type, title, message):
                stored += 1

        logger.info(f"Notified {stored}/{len(users)} users", extra={"roles": roles, "type": type})
        return stored
