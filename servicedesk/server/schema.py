"""SQLAlchemy model for stored notifications."""

from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from servicedesk.core.database import Base
from servicedesk.utils.ids import generate_notification_id


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class NotificationRecord(Base):
  """One notification addressed to one user."""

  __tablename__ = "notifications"
  __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_notification_id)
  user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
  title: Mapped[str] = mapped_column(String(200), nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  type: Mapped[str] = mapped_column(String(64), nullable=False, default="info")
  priority: Mapped[str] = mapped_column(String(16), nullable=False, default="low")
  is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  read_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  related_item_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
  related_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
