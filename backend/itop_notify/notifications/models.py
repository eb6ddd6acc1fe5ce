"""Stored notification model."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from ..database.base import Base


class Notification(Base):
    """One notification delivered to one user.

    ``object_id`` carries the idempotency key, so the same event is stored
    at most once per user.
    """

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    app = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=False, index=True)
    object_type = Column(String(32), nullable=False)  # "ticket"
    object_id = Column(String(255), nullable=False)
    subject = Column(String(64), nullable=False)
    parameters = Column(Text, nullable=False, default="{}")
    notified_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("app", "user_id", "object_type", "object_id", name="uq_notifications_object"),
    )
