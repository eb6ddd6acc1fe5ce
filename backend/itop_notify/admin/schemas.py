"""Admin API response schemas."""

from datetime import datetime

from pydantic import BaseModel


class JobRunResponse(BaseModel):
    kind: str
    users_processed: int
    users_skipped: int
    users_failed: int
    notifications_sent: int
    duration_ms: int


class RecentNotification(BaseModel):
    subject: str
    object_id: str
    notified_at: datetime
    title: str
    message: str
    link: str | None = None


class SampleNotificationRequest(BaseModel):
    subject: str = "ticket_assigned"
    ticket_id: str = "1"
    ticket_class: str = "UserRequest"


class SampleNotificationResponse(BaseModel):
    stored: bool
    notification: RecentNotification


class ScheduleStatus(BaseModel):
    eligible: bool
    reason: str
    watermark: int | None = None
    next_eligible_at: int | None = None
    enabled_types: list[str] = []


class NotificationStatusResponse(BaseModel):
    user_id: str
    notifications_enabled: bool
    person_id: str | None = None
    remote_user_id: str | None = None
    is_portal_only: bool | None = None
    check_interval_minutes: int
    interval_source: str  # "user" | "admin"
    portal: ScheduleStatus
    agent: ScheduleStatus
    notifications_stored: int
    recent_notifications: list[RecentNotification] = []


class ProfileRefreshResponse(BaseModel):
    user_id: str
    is_portal_only: bool


class CacheClearResponse(BaseModel):
    ok: bool = True
    deleted: int
