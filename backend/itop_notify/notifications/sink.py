"""Host notification store.

Notifications are written to the ``notifications`` table. A notification
whose ``(app, user_id, object_type, object_id)`` already exists is dropped,
which makes re-delivery of the same event harmless.
"""

import json
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import APP_ID
from .models import Notification

logger = logging.getLogger(__name__)


class NotificationManager:
    def __init__(self, db: Session) -> None:
        self._db = db

    def create_notification(
        self,
        user_id: str,
        notified_at: datetime,
        object_type: str,
        object_id: str,
        subject: str,
        parameters: dict,
        app: str = APP_ID,
    ) -> Notification:
        return Notification(
            app=app,
            user_id=user_id,
            object_type=object_type,
            object_id=object_id,
            subject=subject,
            parameters=json.dumps(parameters, sort_keys=True, default=str),
            notified_at=notified_at,
        )

    def _exists(self, notification: Notification) -> bool:
        return (
            self._db.query(Notification.id)
            .filter(
                Notification.app == notification.app,
                Notification.user_id == notification.user_id,
                Notification.object_type == notification.object_type,
                Notification.object_id == notification.object_id,
            )
            .first()
            is not None
        )

    def notify(self, notification: Notification) -> bool:
        """Store the notification. Returns False when it was already delivered."""
        if self._exists(notification):
            logger.debug("Notification %s already delivered to %s", notification.object_id, notification.user_id)
            return False
        try:
            with self._db.begin_nested():
                self._db.add(notification)
        except IntegrityError:
            logger.debug("Notification %s already delivered to %s", notification.object_id, notification.user_id)
            return False
        return True

    def list_for_user(self, user_id: str, limit: int = 50, app: str = APP_ID) -> list[Notification]:
        return (
            self._db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.app == app)
            .order_by(Notification.notified_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    def count_for_user(self, user_id: str) -> int:
        return self._db.query(Notification).filter(Notification.user_id == user_id).count()
