"""Persistence for notifications, always scoped to the owning user."""

from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass

from sqlalchemy import asc, delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.notifications.models import NotificationPayload
from servicedesk.server.schema import NotificationRecord

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {"createdAt": NotificationRecord.created_at, "title": NotificationRecord.title}


class NotificationNotFoundError(LookupError):
  """Raised when a notification id does not exist."""


class NotificationForbiddenError(PermissionError):
  """Raised when a notification belongs to another user."""


@dataclass(frozen=True)
class PageRequest:
  page: int = 1
  limit: int = 10
  unread_only: bool = False
  category: str | None = None
  related_kind: str | None = None
  sort_by: str = "createdAt"
  sort_order: str = "desc"


@dataclass(frozen=True)
class PageResult:
  records: list[NotificationRecord]
  total_count: int
  total_pages: int
  unread_count: int


@dataclass(frozen=True)
class NewNotification:
  user_id: str
  title: str
  message: str
  type: str = "info"
  priority: str = "low"
  related_item_type: str | None = None
  related_item_id: str | None = None


def _as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
  # SQLite drops tzinfo on the way back out.
  if value is None or value.tzinfo is not None:
    return value
  return value.replace(tzinfo=datetime.UTC)


def to_payload(record: NotificationRecord) -> NotificationPayload:
  """Map a row to the wire shape shared by REST responses and push events."""
  return NotificationPayload(
    id=record.id,
    title=record.title,
    message=record.message,
    type=record.type,
    priority=record.priority,
    is_read=record.is_read,
    created_at=_as_utc(record.created_at),
    read_at=_as_utc(record.read_at),
    related_item_type=record.related_item_type,
    related_item_id=record.related_item_id,
  )


class NotificationRepository:
  """Query and mutate notifications inside one session."""

  def __init__(self, session: AsyncSession) -> None:
    self._session = session

  async def list_page(self, user_id: str, request: PageRequest) -> PageResult:
    conditions = [NotificationRecord.user_id == user_id]
    if request.unread_only:
      conditions.append(NotificationRecord.is_read.is_(False))
    if request.category:
      conditions.append(NotificationRecord.type == request.category)
    if request.related_kind:
      conditions.append(NotificationRecord.related_item_type == request.related_kind)

    column = _SORT_COLUMNS.get(request.sort_by, NotificationRecord.created_at)
    ordering = asc(column) if request.sort_order == "asc" else desc(column)

    query = select(NotificationRecord).where(*conditions).order_by(ordering, NotificationRecord.id).limit(request.limit).offset((request.page - 1) * request.limit)
    records = list((await self._session.execute(query)).scalars().all())

    total_count = await self._session.scalar(select(func.count()).select_from(NotificationRecord).where(*conditions)) or 0
    unread_count = await self.unread_count(user_id)
    total_pages = math.ceil(total_count / request.limit) if total_count else 0
    return PageResult(records=records, total_count=total_count, total_pages=total_pages, unread_count=unread_count)

  async def unread_count(self, user_id: str) -> int:
    query = select(func.count()).select_from(NotificationRecord).where(NotificationRecord.user_id == user_id, NotificationRecord.is_read.is_(False))
    return await self._session.scalar(query) or 0

  async def get_owned(self, user_id: str, notification_id: str) -> NotificationRecord:
    record = await self._session.get(NotificationRecord, notification_id)
    if record is None:
      raise NotificationNotFoundError(notification_id)
    if record.user_id != user_id:
      raise NotificationForbiddenError(notification_id)
    return record

  async def mark_read(self, user_id: str, notification_id: str) -> NotificationRecord:
    """Mark one record read; an already-read record keeps its original read_at."""
    record = await self.get_owned(user_id, notification_id)
    if not record.is_read:
      record.is_read = True
      record.read_at = datetime.datetime.now(datetime.UTC)
      await self._session.commit()
    return record

  async def mark_all_read(self, user_id: str) -> int:
    statement = (
      update(NotificationRecord)
      .where(NotificationRecord.user_id == user_id, NotificationRecord.is_read.is_(False))
      .values(is_read=True, read_at=datetime.datetime.now(datetime.UTC))
      .execution_options(synchronize_session=False)
    )
    result = await self._session.execute(statement)
    await self._session.commit()
    return result.rowcount or 0

  async def delete(self, user_id: str, notification_id: str) -> None:
    record = await self.get_owned(user_id, notification_id)
    await self._session.delete(record)
    await self._session.commit()

  async def delete_all(self, user_id: str) -> int:
    result = await self._session.execute(delete(NotificationRecord).where(NotificationRecord.user_id == user_id))
    await self._session.commit()
    return result.rowcount or 0

  async def create(self, entry: NewNotification) -> NotificationRecord:
    record = NotificationRecord(
      user_id=entry.user_id,
      title=entry.title,
      message=entry.message,
      type=entry.type,
      priority=entry.priority,
      related_item_type=entry.related_item_type,
      related_item_id=entry.related_item_id,
    )
    self._session.add(record)
    await self._session.commit()
    logger.info("Created notification id=%s user_id=%s type=%s", record.id, entry.user_id, entry.type)
    return record
