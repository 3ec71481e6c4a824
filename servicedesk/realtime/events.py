"""Typed push-channel events and the JSON envelope they travel in."""

from __future__ import annotations

from enum import Enum
from typing import Any

import msgspec

from servicedesk.notifications.contracts import EventDecodeError
from servicedesk.notifications.models import NotificationPayload

# Close code the server uses when the bearer token is missing or rejected.
AUTH_FAILED_CLOSE_CODE = 4401


class EventKind(str, Enum):
  # server -> client
  NOTIFICATION = "notification"
  INCIDENT_UPDATE = "incident:update"
  EQUIPMENT_UPDATE = "equipment:update"
  DASHBOARD_UPDATE = "dashboard:update"
  ERROR = "error"
  # client -> server
  SUBSCRIBE = "subscribe"
  UNSUBSCRIBE = "unsubscribe"
  NOTIFICATION_READ = "notification:read"
  NOTIFICATION_READ_ALL = "notification:readAll"
  SUBSCRIBE_INCIDENT = "subscribe:incident"
  UNSUBSCRIBE_INCIDENT = "unsubscribe:incident"


INBOUND_KINDS = frozenset({EventKind.NOTIFICATION, EventKind.INCIDENT_UPDATE, EventKind.EQUIPMENT_UPDATE, EventKind.DASHBOARD_UPDATE, EventKind.ERROR})
OUTBOUND_KINDS = frozenset(set(EventKind) - INBOUND_KINDS)


class IncidentUpdate(msgspec.Struct, rename="camel", omit_defaults=True):
  incident_id: str
  status: str | None = None
  priority: str | None = None
  title: str | None = None
  assignee_id: str | None = None
  timestamp: str | None = None


class EquipmentUpdate(msgspec.Struct, rename="camel", omit_defaults=True):
  equipment_id: str
  status: str | None = None
  name: str | None = None
  timestamp: str | None = None


class DashboardUpdate(msgspec.Struct, rename="camel", omit_defaults=True):
  section: str | None = None


class ChannelError(msgspec.Struct):
  message: str = "Unknown error"


class ChannelScope(msgspec.Struct, rename="camel"):
  """Payload of subscribe/unsubscribe: scopes the channel to one user."""

  user_id: str


class NotificationRead(msgspec.Struct, rename="camel"):
  notification_id: str


class IncidentScope(msgspec.Struct, rename="camel"):
  incident_id: str


class Empty(msgspec.Struct):
  pass


PAYLOAD_TYPES: dict[EventKind, type[msgspec.Struct]] = {
  EventKind.NOTIFICATION: NotificationPayload,
  EventKind.INCIDENT_UPDATE: IncidentUpdate,
  EventKind.EQUIPMENT_UPDATE: EquipmentUpdate,
  EventKind.DASHBOARD_UPDATE: DashboardUpdate,
  EventKind.ERROR: ChannelError,
  EventKind.SUBSCRIBE: ChannelScope,
  EventKind.UNSUBSCRIBE: ChannelScope,
  EventKind.NOTIFICATION_READ: NotificationRead,
  EventKind.NOTIFICATION_READ_ALL: Empty,
  EventKind.SUBSCRIBE_INCIDENT: IncidentScope,
  EventKind.UNSUBSCRIBE_INCIDENT: IncidentScope,
}


class Envelope(msgspec.Struct):
  event: str
  data: Any = None


def encode_envelope(kind: EventKind, payload: msgspec.Struct | dict[str, Any] | None = None) -> str:
  """Serialize an event for the wire."""
  if payload is None:
    payload = Empty()
  return msgspec.json.encode(Envelope(event=kind.value, data=payload)).decode("utf-8")


def decode_envelope(raw: str | bytes) -> tuple[EventKind, msgspec.Struct]:
  """Parse one frame into its event kind and typed payload."""
  try:
    envelope = msgspec.json.decode(raw, type=Envelope)
  except msgspec.DecodeError as exc:
    raise EventDecodeError(f"Invalid event envelope: {exc}") from exc

  try:
    kind = EventKind(envelope.event)
  except ValueError as exc:
    raise EventDecodeError(f"Unknown event: {envelope.event}") from exc

  payload_type = PAYLOAD_TYPES[kind]
  data = envelope.data if envelope.data is not None else {}
  try:
    payload = msgspec.convert(data, type=payload_type)
  except msgspec.ValidationError as exc:
    raise EventDecodeError(f"Invalid payload for {kind.value}: {exc}") from exc

  return kind, payload
