"""Notification records, identities and wire payloads."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import msgspec

from servicedesk.utils.ids import is_temp_id


class NotificationCategory(str, Enum):
  INFO = "info"
  SUCCESS = "success"
  WARNING = "warning"
  ERROR = "error"
  INCIDENT_ASSIGNED = "incident_assigned"
  INCIDENT_STATUS_CHANGED = "incident_status_changed"
  INCIDENT_COMMENT_ADDED = "incident_comment_added"
  EQUIPMENT_STATUS_CHANGED = "equipment_status_changed"
  REPORT_GENERATED = "report_generated"
  SYSTEM = "system"

  @classmethod
  def _missing_(cls, value: object) -> NotificationCategory:
    # Servers emit both `INFO` and `info`; anything unrecognised is a system notice.
    if isinstance(value, str):
      normalized = value.strip().lower()
      for member in cls:
        if member.value == normalized:
          return member
    return cls.SYSTEM


class NotificationPriority(str, Enum):
  LOW = "low"
  MEDIUM = "medium"
  HIGH = "high"

  @classmethod
  def _missing_(cls, value: object) -> NotificationPriority:
    if isinstance(value, str):
      normalized = value.strip().lower()
      for member in cls:
        if member.value == normalized:
          return member
    return cls.LOW


class RelatedKind(str, Enum):
  INCIDENT = "incident"
  EQUIPMENT = "equipment"
  REPORT = "report"
  USER = "user"


@dataclass(frozen=True)
class PendingId:
  """Client-assigned identity used until the server acknowledges a record."""

  temp_id: str

  def __str__(self) -> str:
    return self.temp_id


@dataclass(frozen=True)
class ConfirmedId:
  """Server-assigned identity."""

  server_id: str

  def __str__(self) -> str:
    return self.server_id


NotificationId = PendingId | ConfirmedId


def parse_notification_id(raw: str) -> NotificationId:
  """Map a wire id onto its identity variant."""
  if is_temp_id(raw):
    return PendingId(raw)
  return ConfirmedId(raw)


@dataclass(frozen=True)
class RelatedEntity:
  """Reference from a notification to the incident/equipment/report it concerns."""

  kind: RelatedKind
  entity_id: str


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True)
class Notification:
  """A single notification as held by the client store."""

  id: NotificationId
  title: str
  message: str
  category: NotificationCategory = NotificationCategory.INFO
  priority: NotificationPriority = NotificationPriority.LOW
  is_read: bool = False
  created_at: datetime.datetime = field(default_factory=_utcnow)
  read_at: datetime.datetime | None = None
  related: RelatedEntity | None = None

  @property
  def key(self) -> str:
    return str(self.id)

  @property
  def is_pending(self) -> bool:
    return isinstance(self.id, PendingId)

  def as_read(self, when: datetime.datetime | None = None) -> Notification:
    """Return a read copy; read state never moves back to unread."""
    if self.is_read:
      return self
    return replace(self, is_read=True, read_at=self.read_at or when or _utcnow())

  def confirmed(self, server_record: Notification) -> Notification:
    """Adopt the server's identity while keeping the original creation time."""
    return replace(server_record, created_at=self.created_at)

  @classmethod
  def from_payload(cls, payload: NotificationPayload) -> Notification:
    related = None
    if payload.related_item_type and payload.related_item_id:
      try:
        related = RelatedEntity(kind=RelatedKind(payload.related_item_type.lower()), entity_id=payload.related_item_id)
      except ValueError:
        related = None
    return cls(
      id=parse_notification_id(payload.id),
      title=payload.title,
      message=payload.message,
      category=NotificationCategory(payload.type),
      priority=NotificationPriority(payload.priority),
      is_read=payload.is_read,
      created_at=payload.created_at or _utcnow(),
      read_at=payload.read_at,
      related=related,
    )

  def to_payload(self) -> NotificationPayload:
    return NotificationPayload(
      id=self.key,
      title=self.title,
      message=self.message,
      type=self.category.value,
      priority=self.priority.value,
      is_read=self.is_read,
      created_at=self.created_at,
      read_at=self.read_at,
      related_item_type=self.related.kind.value if self.related else None,
      related_item_id=self.related.entity_id if self.related else None,
    )


@dataclass(frozen=True)
class NotificationDraft:
  """User-triggered notification before the server has stored it."""

  title: str
  message: str
  category: NotificationCategory = NotificationCategory.INFO
  priority: NotificationPriority = NotificationPriority.LOW
  related: RelatedEntity | None = None
  user_id: str | None = None

  def as_pending(self, temp_id: str) -> Notification:
    return Notification(id=PendingId(temp_id), title=self.title, message=self.message, category=self.category, priority=self.priority, related=self.related)

  def to_request(self) -> dict[str, Any]:
    body: dict[str, Any] = {"title": self.title, "message": self.message, "type": self.category.value, "priority": self.priority.value}
    if self.related is not None:
      body["relatedItemType"] = self.related.kind.value
      body["relatedItemId"] = self.related.entity_id
    if self.user_id is not None:
      body["userId"] = self.user_id
    return body


@dataclass(frozen=True)
class NotificationFilter:
  unread_only: bool = False
  category: NotificationCategory | None = None
  related_kind: RelatedKind | None = None


@dataclass(frozen=True)
class NotificationSort:
  field: str = "createdAt"
  order: str = "desc"

  def __post_init__(self) -> None:
    if self.field not in {"createdAt", "title"}:
      raise ValueError(f"Unsupported sort field: {self.field}")
    if self.order not in {"asc", "desc"}:
      raise ValueError(f"Unsupported sort order: {self.order}")


@dataclass(frozen=True)
class NotificationQuery:
  """Pagination, filter and sort arguments for one list request."""

  page: int = 1
  page_size: int = 10
  filter: NotificationFilter = field(default_factory=NotificationFilter)
  sort: NotificationSort = field(default_factory=NotificationSort)

  def __post_init__(self) -> None:
    if self.page < 1:
      raise ValueError("page must be >= 1")
    if self.page_size < 1:
      raise ValueError("page_size must be >= 1")

  def to_params(self) -> dict[str, str]:
    params = {"page": str(self.page), "limit": str(self.page_size), "sortBy": self.sort.field, "sortOrder": self.sort.order}
    if self.filter.unread_only:
      params["unreadOnly"] = "true"
    if self.filter.category is not None:
      params["type"] = self.filter.category.value
    if self.filter.related_kind is not None:
      params["relatedItemType"] = self.filter.related_kind.value
    return params


@dataclass(frozen=True)
class NotificationPage:
  """Server-authoritative page of notifications and counters."""

  notifications: list[Notification]
  total_count: int
  total_pages: int
  unread_count: int
  page: int = 1
  limit: int = 10


class NotificationPayload(msgspec.Struct, rename="camel", omit_defaults=True):
  """JSON shape of a notification on the REST API and the push channel."""

  id: str
  title: str = ""
  message: str = ""
  type: str = "info"
  priority: str = "low"
  is_read: bool = False
  created_at: datetime.datetime | None = None
  read_at: datetime.datetime | None = None
  related_item_type: str | None = None
  related_item_id: str | None = None


class NotificationPagePayload(msgspec.Struct, rename="camel"):
  """JSON shape of `GET /notifications`."""

  notifications: list[NotificationPayload]
  total_count: int = 0
  total_pages: int = 0
  unread_count: int = 0
  page: int = 1
  limit: int = 10

  def to_page(self) -> NotificationPage:
    return NotificationPage(
      notifications=[Notification.from_payload(item) for item in self.notifications],
      total_count=self.total_count,
      total_pages=self.total_pages,
      unread_count=self.unread_count,
      page=self.page,
      limit=self.limit,
    )
