"""Client-side notification state: the loaded page plus the unread counter."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import msgspec

from servicedesk.notifications.alerts import AlertCenter
from servicedesk.notifications.contracts import NotificationsApi, ServiceDeskError
from servicedesk.notifications.models import Notification, NotificationDraft, NotificationFilter, NotificationId, NotificationPage, NotificationPayload, NotificationQuery, NotificationSort
from servicedesk.utils.ids import generate_temp_id

logger = logging.getLogger(__name__)


@dataclass
class NotificationsState:
  notifications: list[Notification] = field(default_factory=list)
  unread_count: int = 0
  total_count: int = 0
  total_pages: int = 0
  page: int = 1
  page_size: int = 10
  is_loading: bool = False
  error: str | None = None
  last_fetched: datetime.datetime | None = None


StateListener = Callable[[NotificationsState], None]


@dataclass
class _FetchJournal:
  """Local changes made while the newest fetch is in flight."""

  pushed: list[Notification] = field(default_factory=list)
  deleted: set[str] = field(default_factory=set)
  read_at: dict[str, datetime.datetime | None] = field(default_factory=dict)
  all_read_at: datetime.datetime | None = None
  cleared: bool = False

  def forget(self, key: str) -> None:
    self.pushed = [record for record in self.pushed if record.key != key]

  def mark_read(self, key: str, when: datetime.datetime | None) -> None:
    self.read_at.setdefault(key, when)
    self.pushed = [record.as_read(when) if record.key == key else record for record in self.pushed]

  def mark_all_read(self, when: datetime.datetime) -> None:
    self.all_read_at = when
    self.pushed = [record.as_read(when) for record in self.pushed]

  def clear(self) -> None:
    self.cleared = True
    self.pushed = []


def _coerce(payload: Notification | NotificationPayload | dict[str, Any]) -> Notification:
  if isinstance(payload, Notification):
    return payload
  if isinstance(payload, NotificationPayload):
    return Notification.from_payload(payload)
  return Notification.from_payload(msgspec.convert(payload, type=NotificationPayload))


class NotificationStore:
  """
  Single writer for notification state.

  Server responses replace or patch the loaded page; push events are
  prepended. Fetches are ticketed: only the newest fetch may write. Pushes,
  deletes and reads that land while it is in flight are journaled and
  replayed on top of its page, so a stale snapshot never resurrects a
  deleted record or turns a read one unread.
  """

  def __init__(self, api: NotificationsApi, *, alerts: AlertCenter | None = None, page_size: int = 10) -> None:
    self._api = api
    self._alerts = alerts
    self._state = NotificationsState(page_size=page_size)
    self._listeners: list[StateListener] = []
    self._pending_ops = 0
    self._fetch_ticket = 0
    self._journal: _FetchJournal | None = None

  # -- selectors --

  @property
  def state(self) -> NotificationsState:
    return self._state

  @property
  def notifications(self) -> list[Notification]:
    return list(self._state.notifications)

  @property
  def unread_count(self) -> int:
    return self._state.unread_count

  @property
  def is_loading(self) -> bool:
    return self._state.is_loading

  @property
  def error(self) -> str | None:
    return self._state.error

  @property
  def last_fetched(self) -> datetime.datetime | None:
    return self._state.last_fetched

  def get(self, notification_id: NotificationId | str) -> Notification | None:
    index = self._index_of(str(notification_id))
    return None if index is None else self._state.notifications[index]

  def subscribe(self, listener: StateListener) -> Callable[[], None]:
    """Register a re-render hook called after every state change."""
    self._listeners.append(listener)

    def unsubscribe() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return unsubscribe

  # -- server-backed operations --

  async def fetch(self, page: int = 1, page_size: int | None = None, filter: NotificationFilter | None = None, sort: NotificationSort | None = None) -> NotificationPage | None:  # noqa: A002
    """Replace the loaded page and counters with the server's; returns None when superseded."""
    query = NotificationQuery(page=page, page_size=page_size or self._state.page_size, filter=filter or NotificationFilter(), sort=sort or NotificationSort())
    self._fetch_ticket += 1
    ticket = self._fetch_ticket
    # Changes before this point are part of the server snapshot we are about to read.
    self._journal = _FetchJournal()

    self._begin()
    try:
      result = await self._api.list_notifications(query)
    except ServiceDeskError as exc:
      if ticket == self._fetch_ticket:
        self._journal = None
        self._fail(exc)
      raise
    finally:
      self._end()

    if ticket != self._fetch_ticket:
      logger.debug("Dropping stale notifications page ticket=%s latest=%s", ticket, self._fetch_ticket)
      return None

    journal, self._journal = self._journal or _FetchJournal(), None
    records, unread_count, total_count = self._replay(result, journal)
    self._state.notifications = records
    self._state.unread_count = unread_count
    self._state.total_count = total_count
    self._state.total_pages = result.total_pages
    self._state.page = query.page
    self._state.page_size = query.page_size
    self._state.last_fetched = datetime.datetime.now(datetime.UTC)
    self._changed()
    return result

  async def mark_as_read(self, notification_id: NotificationId | str) -> Notification | None:
    """Mark one record read; the counter drops only on an unread->read transition."""
    key = str(notification_id)
    index = self._index_of(key)
    if index is not None:
      current = self._state.notifications[index]
      if current.is_read:
        return current
      if current.is_pending:
        raise ValueError(f"Notification {key} has not been confirmed by the server yet")

    self._begin()
    try:
      server_record = await self._api.mark_as_read(key)
    except ServiceDeskError as exc:
      self._fail(exc)
      raise
    finally:
      self._end()

    if self._journal is not None:
      self._journal.mark_read(key, server_record.read_at)
    # Re-resolve: the list may have changed while the request was in flight.
    index = self._index_of(key)
    if index is None:
      return server_record
    updated = self._state.notifications[index].as_read(server_record.read_at)
    self._replace_at(index, updated)
    self._changed()
    return updated

  async def mark_all_as_read(self) -> int:
    self._begin()
    try:
      modified = await self._api.mark_all_as_read()
    except ServiceDeskError as exc:
      self._fail(exc)
      raise
    finally:
      self._end()

    now = datetime.datetime.now(datetime.UTC)
    if self._journal is not None:
      self._journal.mark_all_read(now)
    self._state.notifications = [record.as_read(now) for record in self._state.notifications]
    self._state.unread_count = 0
    self._changed()
    return modified

  async def delete(self, notification_id: NotificationId | str) -> None:
    key = str(notification_id)
    self._begin()
    try:
      await self._api.delete(key)
    except ServiceDeskError as exc:
      self._fail(exc)
      raise
    finally:
      self._end()

    if self._journal is not None:
      self._journal.deleted.add(key)
      self._journal.forget(key)
    index = self._index_of(key)
    if index is not None:
      self._remove_at(index)
      self._state.total_count = max(0, self._state.total_count - 1)
    self._changed()

  async def clear_all(self) -> int:
    self._begin()
    try:
      deleted = await self._api.clear_all()
    except ServiceDeskError as exc:
      self._fail(exc)
      raise
    finally:
      self._end()

    if self._journal is not None:
      self._journal.clear()
    self._state.notifications = []
    self._state.unread_count = 0
    self._state.total_count = 0
    self._state.total_pages = 0
    self._changed()
    return deleted

  async def create(self, draft: NotificationDraft) -> Notification:
    """Insert a pending record immediately, then swap in the server's record or roll back."""
    pending = draft.as_pending(generate_temp_id())
    self._insert_front(pending)
    self._state.total_count += 1
    self._changed()

    self._begin()
    try:
      confirmed = await self._api.create(draft)
    except ServiceDeskError as exc:
      if self._journal is not None:
        self._journal.forget(pending.key)
      index = self._index_of(pending.key)
      if index is not None:
        self._remove_at(index)
        self._state.total_count = max(0, self._state.total_count - 1)
      self._fail(exc)
      raise
    finally:
      self._end()

    record = pending.confirmed(confirmed)
    index = self._index_of(pending.key)
    if index is not None and self._state.notifications[index].is_read:
      # Marked read while pending (mark-all); read state never moves back.
      local = self._state.notifications[index]
      record = record.as_read(local.read_at)
    if self._index_of(record.key) is not None:
      # The push channel delivered the server copy first; keep that one.
      if index is not None:
        self._remove_at(index)
        self._state.total_count = max(0, self._state.total_count - 1)
    elif index is not None:
      self._replace_at(index, record)
      if self._journal is not None:
        self._journal.pushed.append(record)
    self._changed()
    return record

  # -- local operations --

  def add_notification(self, payload: Notification | NotificationPayload | dict[str, Any]) -> bool:
    """Prepend a pushed record; returns False for duplicates."""
    record = _coerce(payload)
    if self._index_of(record.key) is not None:
      logger.debug("Ignoring duplicate notification id=%s", record.key)
      return False

    self._insert_front(record)
    self._state.total_count += 1
    if self._journal is not None:
      self._journal.pushed.append(record)
    self._changed()
    return True

  def set_unread_count(self, count: int) -> None:
    self._state.unread_count = max(0, count)
    self._changed()

  def reset_error(self) -> None:
    self._state.error = None
    self._changed()

  def reset(self) -> None:
    """Forget everything (logout)."""
    self._fetch_ticket += 1
    self._journal = None
    self._state = NotificationsState(page_size=self._state.page_size)
    self._changed()

  # -- internals --

  @staticmethod
  def _replay(result: NotificationPage, journal: _FetchJournal) -> tuple[list[Notification], int, int]:
    """Apply journaled local changes to a fetched page; returns records, unread and total counts."""
    if journal.cleared:
      records: list[Notification] = []
      unread_count = 0
      total_count = 0
    else:
      records = []
      unread_count = 0 if journal.all_read_at is not None else result.unread_count
      total_count = result.total_count
      for record in result.notifications:
        if record.key in journal.deleted:
          total_count -= 1
          if not record.is_read and journal.all_read_at is None:
            unread_count -= 1
          continue
        if not record.is_read:
          if journal.all_read_at is not None:
            record = record.as_read(journal.all_read_at)
          elif record.key in journal.read_at:
            record = record.as_read(journal.read_at[record.key])
            unread_count -= 1
        records.append(record)

    seen = {record.key for record in records}
    for pushed in journal.pushed:
      if pushed.key in seen:
        continue
      records.insert(0, pushed)
      seen.add(pushed.key)
      total_count += 1
      if not pushed.is_read:
        unread_count += 1
    return records, max(0, unread_count), max(0, total_count)

  def _index_of(self, key: str) -> int | None:
    for index, record in enumerate(self._state.notifications):
      if record.key == key:
        return index
    return None

  def _insert_front(self, record: Notification) -> None:
    self._state.notifications.insert(0, record)
    if not record.is_read:
      self._state.unread_count += 1

  def _remove_at(self, index: int) -> Notification:
    record = self._state.notifications.pop(index)
    if not record.is_read:
      self._state.unread_count = max(0, self._state.unread_count - 1)
    return record

  def _replace_at(self, index: int, record: Notification) -> None:
    previous = self._state.notifications[index]
    self._state.notifications[index] = record
    if not previous.is_read and record.is_read:
      self._state.unread_count = max(0, self._state.unread_count - 1)
    elif previous.is_read and not record.is_read:
      self._state.unread_count += 1

  def _begin(self) -> None:
    self._pending_ops += 1
    self._state.is_loading = True
    self._state.error = None

  def _end(self) -> None:
    self._pending_ops = max(0, self._pending_ops - 1)
    self._state.is_loading = self._pending_ops > 0

  def _fail(self, exc: ServiceDeskError) -> None:
    message = getattr(exc, "message", None) or str(exc)
    self._state.error = message
    if self._alerts is not None:
      self._alerts.error(message)
    self._changed()

  def _changed(self) -> None:
    for listener in list(self._listeners):
      try:
        listener(self._state)
      except Exception:  # noqa: BLE001
        logger.error("Notification state listener failed", exc_info=True)
