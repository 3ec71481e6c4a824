"""In-process registry of live push connections and the rooms they belong to."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import msgspec
from fastapi import WebSocket
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketDisconnect

from servicedesk.core.security import Principal
from servicedesk.notifications.contracts import EventDecodeError
from servicedesk.realtime.events import ChannelError, ChannelScope, EventKind, IncidentScope, IncidentUpdate, NotificationRead, decode_envelope, encode_envelope
from servicedesk.server.repo import NotificationForbiddenError, NotificationNotFoundError, NotificationRepository

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _Client:
  websocket: WebSocket
  principal: Principal
  receives_user_events: bool = True
  incidents: set[str] = field(default_factory=set)


class PushHub:
  """
  Tracks sockets per user, per role room and per incident room.

  A socket joins its user and role rooms on connect. `subscribe` and
  `unsubscribe` toggle delivery of user-addressed events, and
  `subscribe:incident` adds the socket to an incident room.
  """

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory
    self._clients: dict[WebSocket, _Client] = {}
    self._by_user: dict[str, set[WebSocket]] = defaultdict(set)
    self._by_role: dict[str, set[WebSocket]] = defaultdict(set)
    self._by_incident: dict[str, set[WebSocket]] = defaultdict(set)

  def register(self, websocket: WebSocket, principal: Principal) -> None:
    self._clients[websocket] = _Client(websocket=websocket, principal=principal)
    self._by_user[principal.user_id].add(websocket)
    self._by_role[principal.role].add(websocket)
    logger.info("Push client connected user_id=%s role=%s", principal.user_id, principal.role)

  def unregister(self, websocket: WebSocket) -> None:
    client = self._clients.pop(websocket, None)
    if client is None:
      return
    self._discard(self._by_user, client.principal.user_id, websocket)
    self._discard(self._by_role, client.principal.role, websocket)
    for incident_id in client.incidents:
      self._discard(self._by_incident, incident_id, websocket)
    logger.info("Push client disconnected user_id=%s", client.principal.user_id)

  def online_counts(self) -> dict[str, Any]:
    return {
      "users": len(self._by_user),
      "connections": len(self._clients),
      "roles": {role: len(sockets) for role, sockets in self._by_role.items()},
    }

  async def send_to_user(self, user_id: str, kind: EventKind, payload: msgspec.Struct | None = None) -> int:
    sockets = [ws for ws in self._by_user.get(user_id, ()) if self._clients[ws].receives_user_events]
    return await self._send(sockets, encode_envelope(kind, payload))

  async def broadcast_to_role(self, role: str, kind: EventKind, payload: msgspec.Struct | None = None) -> int:
    return await self._send(list(self._by_role.get(role, ())), encode_envelope(kind, payload))

  async def broadcast_to_all(self, kind: EventKind, payload: msgspec.Struct | None = None) -> int:
    return await self._send(list(self._clients), encode_envelope(kind, payload))

  async def broadcast_incident_update(self, update: IncidentUpdate) -> int:
    sockets = list(self._by_incident.get(update.incident_id, ()))
    return await self._send(sockets, encode_envelope(EventKind.INCIDENT_UPDATE, update))

  async def handle_frame(self, websocket: WebSocket, raw: str) -> None:
    """Apply one client event; malformed or forbidden events get an `error` reply."""
    client = self._clients.get(websocket)
    if client is None:
      return

    try:
      kind, payload = decode_envelope(raw)
    except EventDecodeError as exc:
      logger.warning("Rejected push frame from user_id=%s: %s", client.principal.user_id, exc)
      await self._reply_error(websocket, str(exc))
      return

    if kind in (EventKind.SUBSCRIBE, EventKind.UNSUBSCRIBE) and isinstance(payload, ChannelScope):
      if payload.user_id != client.principal.user_id:
        await self._reply_error(websocket, "Cannot subscribe to another user's channel")
        return
      client.receives_user_events = kind is EventKind.SUBSCRIBE
    elif kind is EventKind.SUBSCRIBE_INCIDENT and isinstance(payload, IncidentScope):
      client.incidents.add(payload.incident_id)
      self._by_incident[payload.incident_id].add(websocket)
    elif kind is EventKind.UNSUBSCRIBE_INCIDENT and isinstance(payload, IncidentScope):
      client.incidents.discard(payload.incident_id)
      self._discard(self._by_incident, payload.incident_id, websocket)
    elif kind is EventKind.NOTIFICATION_READ and isinstance(payload, NotificationRead):
      await self._persist_read(websocket, client, payload.notification_id)
    elif kind is EventKind.NOTIFICATION_READ_ALL:
      await self._persist_read_all(websocket, client)
    else:
      await self._reply_error(websocket, f"Event {kind.value} cannot be sent by clients")

  async def _persist_read(self, websocket: WebSocket, client: _Client, notification_id: str) -> None:
    if self._session_factory is None:
      return
    async with self._session_factory() as session:
      try:
        await NotificationRepository(session).mark_read(client.principal.user_id, notification_id)
      except (NotificationNotFoundError, NotificationForbiddenError):
        await self._reply_error(websocket, "Notification not found")

  async def _persist_read_all(self, websocket: WebSocket, client: _Client) -> None:
    if self._session_factory is None:
      return
    async with self._session_factory() as session:
      modified = await NotificationRepository(session).mark_all_read(client.principal.user_id)
    logger.debug("Marked %s notifications read over push channel user_id=%s", modified, client.principal.user_id)

  async def _reply_error(self, websocket: WebSocket, message: str) -> None:
    await self._send([websocket], encode_envelope(EventKind.ERROR, ChannelError(message=message)))

  async def _send(self, sockets: list[WebSocket], frame: str) -> int:
    delivered = 0
    for websocket in sockets:
      try:
        await websocket.send_text(frame)
      except (WebSocketDisconnect, RuntimeError) as exc:
        # Sending on a socket that already closed; drop it from every room.
        logger.warning("Dropping dead push connection: %s", exc)
        self.unregister(websocket)
        continue
      delivered += 1
    return delivered

  @staticmethod
  def _discard(index: dict[str, set[WebSocket]], key: str, websocket: WebSocket) -> None:
    sockets = index.get(key)
    if sockets is None:
      return
    sockets.discard(websocket)
    if not sockets:
      del index[key]
