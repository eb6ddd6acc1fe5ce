"""Turn detected events into stored notifications.

Every event goes through one ``UserNotifier`` per user and job run, which
enforces the per-run cap, drops events the user caused themselves, anchors
the notification on the iTop event time and derives a deterministic
idempotency key so a replayed window never produces duplicates.
"""

import hashlib
import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo

from ..config import settings
from ..timeutil import parse_itop_datetime
from .sink import NotificationManager

logger = logging.getLogger(__name__)

OBJECT_TYPE_TICKET = "ticket"


class NotificationBudget:
    """Per-user, per-run notification allowance shared by all event types."""

    def __init__(self, limit: int = settings.notification_rate_limit) -> None:
        self.limit = limit
        self.used = 0

    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def consume(self, n: int = 1) -> bool:
        if n > self.remaining():
            return False
        self.used += n
        return True

    @property
    def exhausted(self) -> bool:
        return self.remaining() == 0


def idempotency_key(ticket_id: str, subject: str, timestamp: str | None, params: dict) -> str:
    """``ticket_id|subject|hash`` where the hash is md5 of the event time.

    Events without a timestamp hash their parameters instead, so the key
    stays stable across runs.
    """
    basis = timestamp if timestamp else json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.md5(basis.encode("utf-8")).hexdigest()[:8]
    return f"{ticket_id}|{subject}|{digest}"


class UserNotifier:
    def __init__(
        self,
        dispatcher: "NotificationDispatcher",
        user_id: str,
        own_actor_id: str | None,
        budget: NotificationBudget,
    ) -> None:
        self._dispatcher = dispatcher
        self.user_id = user_id
        self.own_actor_id = own_actor_id or None
        self.budget = budget
        self.sent = 0
        self.suppressed = 0

    def is_self(self, actor_id: str | None) -> bool:
        return bool(self.own_actor_id) and bool(actor_id) and str(actor_id) == str(self.own_actor_id)

    def notify(self, subject: str, params: dict, actor_id: str | None = None) -> bool:
        """Emit one notification. Returns True when it counted against the budget."""
        if self.budget.exhausted:
            logger.debug("Notification cap reached for user %s, dropping %s", self.user_id, subject)
            return False
        if self.is_self(actor_id):
            self.suppressed += 1
            logger.debug("Skipping %s on ticket %s: caused by the user", subject, params.get("ticket_id"))
            return False

        self.budget.consume()
        self.sent += 1
        self._dispatcher.deliver(self.user_id, subject, params)
        return True


class NotificationDispatcher:
    def __init__(
        self,
        sink: NotificationManager,
        timezone: tzinfo,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sink = sink
        self._tz = timezone
        self._clock = clock

    def normalize_timestamp(self, timestamp: str | None) -> datetime:
        """Event time as an aware datetime; now when missing or unparseable."""
        parsed = parse_itop_datetime(timestamp, self._tz)
        if parsed is None:
            if timestamp:
                logger.debug("Unparseable event timestamp %r, using current time", timestamp)
            return datetime.fromtimestamp(self._clock(), UTC)
        return parsed

    def for_user(
        self,
        user_id: str,
        own_actor_id: str | None,
        limit: int = settings.notification_rate_limit,
    ) -> UserNotifier:
        return UserNotifier(self, user_id, own_actor_id, NotificationBudget(limit))

    def deliver(self, user_id: str, subject: str, params: dict) -> bool:
        """Hand one notification to the sink. Sink failures are logged, not raised."""
        timestamp = params.get("timestamp")
        ticket_id = str(params.get("ticket_id", ""))
        try:
            notification = self._sink.create_notification(
                user_id=user_id,
                notified_at=self.normalize_timestamp(timestamp),
                object_type=OBJECT_TYPE_TICKET,
                object_id=idempotency_key(ticket_id, subject, timestamp, params),
                subject=subject,
                parameters=params,
            )
            stored = self._sink.notify(notification)
        except Exception:
            logger.exception("Failed to send %s notification to user %s", subject, user_id)
            return False
        if stored:
            logger.debug("Sent %s for ticket %s to user %s", subject, ticket_id, user_id)
        return stored
