"""Host user store."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, String

from ..database.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    display_name = Column(String(255), default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
