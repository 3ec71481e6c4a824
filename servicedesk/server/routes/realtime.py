"""Push channel endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from servicedesk.core.security import InvalidCredentialsError, decode_token, get_app_settings
from servicedesk.realtime.events import AUTH_FAILED_CLOSE_CODE
from servicedesk.server.hub import PushHub

logger = logging.getLogger(__name__)

router = APIRouter()


def _extract_token(websocket: WebSocket) -> str | None:
  header = websocket.headers.get("authorization", "")
  scheme, _, credentials = header.partition(" ")
  if scheme.lower() == "bearer" and credentials.strip():
    return credentials.strip()
  token = websocket.query_params.get("token")
  return token or None


@router.websocket("/ws")
async def push_channel(websocket: WebSocket) -> None:
  """Authenticate, join the caller's rooms, then apply client events until the socket closes."""
  # Accept first so the client sees the 4401 close code instead of a bare handshake failure.
  await websocket.accept()

  token = _extract_token(websocket)
  if token is None:
    await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Authentication required")
    return
  try:
    principal = decode_token(get_app_settings(websocket), token)
  except InvalidCredentialsError as exc:
    logger.warning("Rejected push connection: %s", exc)
    await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Invalid token")
    return

  hub: PushHub = websocket.app.state.hub
  hub.register(websocket, principal)
  try:
    while True:
      raw = await websocket.receive_text()
      await hub.handle_frame(websocket, raw)
  except WebSocketDisconnect:
    pass
  finally:
    hub.unregister(websocket)
