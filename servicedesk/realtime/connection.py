"""Single authenticated push channel with bounded automatic reconnection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import msgspec
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from servicedesk.notifications.alerts import REALTIME_AUTH_REJECTED, AlertCenter
from servicedesk.notifications.contracts import AuthenticationMissingError, Channel, ConnectionFailedError, CredentialProvider, EventDecodeError, NotConnectedError, ReconnectExhaustedError, ServiceDeskError
from servicedesk.notifications.models import Notification
from servicedesk.realtime.backoff import ReconnectPolicy
from servicedesk.realtime.events import AUTH_FAILED_CLOSE_CODE, INBOUND_KINDS, ChannelError, EventKind, decode_envelope, encode_envelope
from servicedesk.realtime.registry import Callback, SubscriptionRegistry, Unsubscribe

logger = logging.getLogger(__name__)

ChannelConnector = Callable[[str, dict[str, str]], Awaitable[Channel]]
NotificationSink = Callable[[Notification], Any]


class ConnectionState(str, Enum):
  DISCONNECTED = "disconnected"
  CONNECTING = "connecting"
  CONNECTED = "connected"


async def websocket_connector(url: str, headers: dict[str, str]) -> Channel:
  """Open a client connection with the `websockets` asyncio implementation."""
  return await ws_connect(url, additional_headers=headers, open_timeout=10)


class ConnectionManager:
  """
  Owns the push channel: connect/disconnect lifecycle, reconnection and inbound dispatch.

  Every inbound `notification` event goes to `on_notification` first (the
  store's push path) and then to the registry, so delivery never depends on
  a UI subscriber being present.
  """

  def __init__(
    self,
    url: str,
    *,
    registry: SubscriptionRegistry,
    policy: ReconnectPolicy | None = None,
    credential_provider: CredentialProvider | None = None,
    alerts: AlertCenter | None = None,
    connector: ChannelConnector | None = None,
    on_notification: NotificationSink | None = None,
  ) -> None:
    self._url = url
    self._registry = registry
    self._policy = policy or ReconnectPolicy()
    self._credential_provider = credential_provider
    self._alerts = alerts
    self._connector = connector or websocket_connector
    self._on_notification = on_notification

    self._state = ConnectionState.DISCONNECTED
    self._reconnect_attempts = 0
    self._credential: str | None = None
    self._channel: Channel | None = None
    self._connecting: asyncio.Task[None] | None = None
    self._reader: asyncio.Task[None] | None = None
    self._reconnector: asyncio.Task[None] | None = None
    self._closing = False
    self._attempts_at_open = 0

  @property
  def state(self) -> ConnectionState:
    return self._state

  @property
  def is_connected(self) -> bool:
    return self._state is ConnectionState.CONNECTED

  @property
  def reconnect_attempts(self) -> int:
    return self._reconnect_attempts

  @property
  def registry(self) -> SubscriptionRegistry:
    return self._registry

  def subscribe(self, kind: EventKind, callback: Callback) -> Unsubscribe:
    return self._registry.subscribe(kind, callback)

  async def connect(self, credential: str | None = None, *, retry: bool = True) -> None:
    """
    Open the channel, or join the attempt already in flight.

    Raises AuthenticationMissingError without retrying when no credential is
    available, and ReconnectExhaustedError once the policy gives up.
    """
    if self._state is ConnectionState.CONNECTED:
      return

    if self._connecting is None or self._connecting.done():
      token = credential or (self._credential_provider() if self._credential_provider else None)
      if not token:
        raise AuthenticationMissingError("Authentication token not found")
      self._credential = token
      # An explicit connect supersedes any scheduled reconnect and restarts the count.
      self._cancel_reconnect()
      if retry:
        self._reconnect_attempts = 0
      self._connecting = asyncio.create_task(self._connect(token, retry=retry))

    task = self._connecting
    try:
      await asyncio.shield(task)
    except asyncio.CancelledError:
      current = asyncio.current_task()
      if task.cancelled() and not (current is not None and current.cancelling()):
        raise ConnectionFailedError("Connection attempt was cancelled") from None
      raise

  async def disconnect(self) -> None:
    """Close the channel and stop every background task; a no-op when already closed."""
    self._closing = True
    try:
      self._cancel_reconnect()
      for task in (self._connecting, self._reader):
        if task is not None and not task.done():
          task.cancel()
          try:
            await task
          except (asyncio.CancelledError, ServiceDeskError):
            pass
      channel, self._channel = self._channel, None
      if channel is not None:
        try:
          await channel.close()
        except (WebSocketException, OSError) as exc:
          logger.warning("Error while closing push channel: %s", exc)
        logger.info("Push channel disconnected by client")
    finally:
      self._connecting = None
      self._reader = None
      self._state = ConnectionState.DISCONNECTED
      self._closing = False

  async def emit(self, kind: EventKind, payload: msgspec.Struct | dict[str, Any] | None = None) -> None:
    """Send one event, making a single implicit connection attempt when needed."""
    if not self.is_connected:
      try:
        await self.connect(retry=False)
      except ServiceDeskError as exc:
        raise NotConnectedError(f"Failed to connect to WebSocket server: {exc}") from exc

    channel = self._channel
    if channel is None:
      raise NotConnectedError("WebSocket is not connected")
    try:
      await channel.send(encode_envelope(kind, payload))
    except (ConnectionClosed, OSError) as exc:
      raise NotConnectedError("WebSocket is not connected") from exc

  # -- lifecycle internals --

  async def _connect(self, token: str, *, retry: bool) -> None:
    self._state = ConnectionState.CONNECTING
    while True:
      try:
        await self._open(token)
        return
      except ConnectionFailedError as exc:
        self._state = ConnectionState.DISCONNECTED
        if not retry:
          raise
        self._reconnect_attempts += 1
        logger.warning("Push channel connection failed (attempt %d/%d): %s", self._reconnect_attempts, self._policy.max_attempts, exc)
        if self._policy.exhausted(self._reconnect_attempts):
          self._give_up()
          raise ReconnectExhaustedError(self._reconnect_attempts) from exc
        await asyncio.sleep(self._policy.delay_for(self._reconnect_attempts))
        self._state = ConnectionState.CONNECTING

  async def _open(self, token: str) -> None:
    try:
      channel = await self._connector(self._url, {"Authorization": f"Bearer {token}"})
    except ConnectionFailedError:
      raise
    except (OSError, TimeoutError, WebSocketException) as exc:
      raise ConnectionFailedError(f"WebSocket connection error: {exc}") from exc

    self._channel = channel
    self._state = ConnectionState.CONNECTED
    # Kept so a channel that closes before its first frame does not count as a success.
    self._attempts_at_open = self._reconnect_attempts
    self._reconnect_attempts = 0
    if self._alerts is not None:
      self._alerts.clear_banner()
    self._reader = asyncio.create_task(self._read_loop(channel))
    logger.info("Push channel connected to %s", self._url)

  async def _read_loop(self, channel: Channel) -> None:
    received_frame = False
    close_code: int | None = None
    try:
      while True:
        raw = await channel.recv()
        received_frame = True
        self._handle_frame(raw)
    except ConnectionClosed as exc:
      close_code = exc.rcvd.code if exc.rcvd is not None else None
      reason = exc.rcvd.reason if exc.rcvd is not None else "no close frame"
      logger.info("Push channel closed code=%s: %s", close_code, reason)
    except OSError as exc:
      logger.warning("Push channel transport error: %s", exc)

    if channel is not self._channel or self._closing:
      return
    if close_code == AUTH_FAILED_CLOSE_CODE:
      self._on_auth_rejected()
      return
    if not received_frame:
      # The server accepted and dropped us straight away; keep counting from before the open.
      self._reconnect_attempts = self._attempts_at_open
    self._on_involuntary_disconnect()

  def _on_auth_rejected(self) -> None:
    self._channel = None
    self._reader = None
    self._state = ConnectionState.DISCONNECTED
    self._credential = None
    logger.error("Push channel rejected the credential; not reconnecting until an explicit connect")
    if self._alerts is not None:
      self._alerts.show_banner(REALTIME_AUTH_REJECTED)

  def _handle_frame(self, raw: str | bytes) -> None:
    try:
      kind, payload = decode_envelope(raw)
    except EventDecodeError as exc:
      logger.warning("Dropping push frame: %s", exc)
      return

    if kind not in INBOUND_KINDS:
      logger.warning("Ignoring client-only event %s from server", kind.value)
      return

    if kind is EventKind.NOTIFICATION:
      notification = Notification.from_payload(payload)
      if self._on_notification is not None:
        try:
          self._on_notification(notification)
        except Exception:  # noqa: BLE001
          logger.error("Notification sink failed for id=%s", notification.key, exc_info=True)
      self._registry.dispatch(kind, notification)
      return

    if kind is EventKind.ERROR and isinstance(payload, ChannelError):
      logger.error("Push channel reported error: %s", payload.message)
      if self._alerts is not None:
        self._alerts.error(f"WebSocket error: {payload.message}")

    self._registry.dispatch(kind, payload)

  def _on_involuntary_disconnect(self) -> None:
    self._channel = None
    self._reader = None
    self._state = ConnectionState.DISCONNECTED
    self._reconnect_attempts += 1
    if self._policy.exhausted(self._reconnect_attempts):
      self._give_up()
      return
    self._reconnector = asyncio.create_task(self._reconnect_loop())

  async def _reconnect_loop(self) -> None:
    while True:
      delay = self._policy.delay_for(self._reconnect_attempts)
      logger.info("Reconnecting push channel in %.1fs (attempt %d/%d)", delay, self._reconnect_attempts, self._policy.max_attempts)
      await asyncio.sleep(delay)

      token = (self._credential_provider() if self._credential_provider else None) or self._credential
      if not token:
        logger.error("Reconnect aborted: authentication token not found")
        self._give_up()
        return

      self._state = ConnectionState.CONNECTING
      try:
        await self._open(token)
        return
      except ConnectionFailedError as exc:
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts += 1
        logger.warning("Reconnect failed (attempt %d/%d): %s", self._reconnect_attempts, self._policy.max_attempts, exc)
        if self._policy.exhausted(self._reconnect_attempts):
          self._give_up()
          return

  def _give_up(self) -> None:
    self._state = ConnectionState.DISCONNECTED
    logger.error("Push channel unavailable after %d attempts; waiting for an explicit connect", self._reconnect_attempts)
    if self._alerts is not None:
      self._alerts.show_banner()

  def _cancel_reconnect(self) -> None:
    if self._reconnector is not None and not self._reconnector.done():
      self._reconnector.cancel()
    self._reconnector = None
