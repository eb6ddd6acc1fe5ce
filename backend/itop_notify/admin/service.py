"""Read-side helpers for the admin API."""

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from ..config import settings
from ..notifications.dispatcher import OBJECT_TYPE_TICKET
from ..notifications.models import Notification
from ..notifications.render import NotificationRenderer
from ..notifications.sink import NotificationManager
from ..preferences.policy import JobKind
from ..preferences.repository import ConfigRepository
from ..scheduling.scheduler import UserScheduler
from .schemas import (
    NotificationStatusResponse,
    RecentNotification,
    SampleNotificationRequest,
    SampleNotificationResponse,
    ScheduleStatus,
)

RECENT_LIMIT = 10

# Placeholder values for sample notifications, keyed by parameter name.
_SAMPLE_PARAMS = {
    "old_status": "assigned",
    "new_status": "resolved",
    "agent_name": "Sample Agent",
    "old_agent": "Unassigned",
    "new_agent": "Sample Agent",
    "team_name": "Sample Team",
    "level": 4,
    "sla_type": "TTR",
    "old_priority": "2",
    "commenter_name": "Sample Agent",
    "log_type": "public",
}


def _describe(renderer: NotificationRenderer, notification: Notification) -> RecentNotification:
    rendered = renderer.render(notification.subject, notification.parameters)
    return RecentNotification(
        subject=notification.subject,
        object_id=notification.object_id,
        notified_at=notification.notified_at,
        title=rendered.title,
        message=rendered.message,
        link=rendered.link,
    )


def build_notification_status(db: Session, user_id: str) -> NotificationStatusResponse:
    """Everything that decides whether and what the jobs notify for one user.

    The portal-only flag is reported as stored; this never calls iTop.
    """
    config = ConfigRepository(db)
    sink = NotificationManager(db)
    scheduler = UserScheduler(config)
    renderer = NotificationRenderer(config, user_id, settings.itop_url)
    policy = config.load_policy(user_id)
    default_minutes = config.effective_default_interval_minutes()

    per_kind = {}
    for kind in JobKind:
        decision = scheduler.decide(policy, kind, default_minutes * 60)
        per_kind[kind] = ScheduleStatus(
            eligible=decision.eligible,
            reason=decision.reason,
            watermark=config.get_watermark(user_id, kind),
            next_eligible_at=decision.next_eligible_at,
            enabled_types=sorted(policy.enabled_types(kind)),
        )

    user_minutes = policy.check_interval_minutes
    return NotificationStatusResponse(
        user_id=user_id,
        notifications_enabled=policy.enabled,
        person_id=policy.person_id,
        remote_user_id=policy.remote_user_id,
        is_portal_only=policy.is_portal_only,
        check_interval_minutes=user_minutes if user_minutes is not None else default_minutes,
        interval_source="user" if user_minutes is not None else "admin",
        portal=per_kind[JobKind.PORTAL],
        agent=per_kind[JobKind.AGENT],
        notifications_stored=sink.count_for_user(user_id),
        recent_notifications=[_describe(renderer, n) for n in sink.list_for_user(user_id, limit=RECENT_LIMIT)],
    )


def send_sample_notification(
    db: Session,
    user_id: str,
    request: SampleNotificationRequest,
    now: datetime | None = None,
) -> SampleNotificationResponse:
    """Store one notification of the requested subject with placeholder parameters.

    Raises ValueError for an unknown subject. Nothing is read from iTop and
    no watermark moves.
    """
    config = ConfigRepository(db)
    sink = NotificationManager(db)
    renderer = NotificationRenderer(config, user_id, settings.itop_url)
    now = now or datetime.now(UTC)

    params = dict(_SAMPLE_PARAMS, ticket_id=request.ticket_id, ticket_class=request.ticket_class)
    renderer.render(request.subject, params)

    notification = sink.create_notification(
        user_id=user_id,
        notified_at=now,
        object_type=OBJECT_TYPE_TICKET,
        object_id=f"sample|{request.subject}|{now.timestamp():.6f}",
        subject=request.subject,
        parameters=params,
    )
    stored = sink.notify(notification)
    return SampleNotificationResponse(stored=stored, notification=_describe(renderer, notification))
