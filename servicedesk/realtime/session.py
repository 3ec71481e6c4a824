"""Per-login wiring of the push channel, the store and the REST client."""

from __future__ import annotations

import logging
from types import TracebackType

import httpx

from servicedesk.config import Settings
from servicedesk.notifications.alerts import AlertCenter
from servicedesk.notifications.api_client import NotificationsApiClient
from servicedesk.notifications.contracts import CredentialProvider, NotConnectedError
from servicedesk.notifications.models import Notification, NotificationId
from servicedesk.notifications.store import NotificationStore
from servicedesk.realtime.backoff import ReconnectPolicy
from servicedesk.realtime.connection import ChannelConnector, ConnectionManager
from servicedesk.realtime.events import ChannelScope, EventKind, NotificationRead
from servicedesk.realtime.registry import Callback, SubscriptionRegistry, Unsubscribe

logger = logging.getLogger(__name__)


class NotificationSession:
  """
  Owns one of each collaborator for the lifetime of an authenticated user.

  Build it with `create()` after login and `dispose()` it on logout; nothing
  here is shared between sessions.
  """

  def __init__(self, *, registry: SubscriptionRegistry, connection: ConnectionManager, api: NotificationsApiClient, store: NotificationStore, alerts: AlertCenter) -> None:
    self.registry = registry
    self.connection = connection
    self.api = api
    self.store = store
    self.alerts = alerts
    self._user_id: str | None = None
    self._disposed = False

  @classmethod
  def create(
    cls,
    settings: Settings,
    credential_provider: CredentialProvider,
    *,
    connector: ChannelConnector | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    policy: ReconnectPolicy | None = None,
  ) -> NotificationSession:
    alerts = AlertCenter()
    registry = SubscriptionRegistry()
    api = NotificationsApiClient.from_settings(settings, credential_provider=credential_provider, transport=transport)
    store = NotificationStore(api, alerts=alerts, page_size=settings.page_size)

    def on_push(notification: Notification) -> None:
      if store.add_notification(notification):
        alerts.notify_for(notification)

    connection = ConnectionManager(
      settings.ws_url,
      registry=registry,
      policy=policy or ReconnectPolicy.from_settings(settings),
      credential_provider=credential_provider,
      alerts=alerts,
      connector=connector,
      on_notification=on_push,
    )
    return cls(registry=registry, connection=connection, api=api, store=store, alerts=alerts)

  @property
  def user_id(self) -> str | None:
    return self._user_id

  @property
  def disposed(self) -> bool:
    return self._disposed

  async def start(self, user_id: str) -> None:
    """Connect and scope the channel to `user_id`."""
    if self._disposed:
      raise RuntimeError("Session has been disposed")
    await self.connection.connect()
    await self.connection.emit(EventKind.SUBSCRIBE, ChannelScope(user_id=user_id))
    self._user_id = user_id
    logger.info("Notification session started for user=%s", user_id)

  async def refresh_unread_count(self) -> int:
    count = await self.api.unread_count()
    self.store.set_unread_count(count)
    return count

  async def mark_as_read(self, notification_id: NotificationId | str) -> Notification | None:
    record = await self.store.mark_as_read(notification_id)
    await self._notify_peers(EventKind.NOTIFICATION_READ, NotificationRead(notification_id=str(notification_id)))
    return record

  async def mark_all_as_read(self) -> int:
    modified = await self.store.mark_all_as_read()
    await self._notify_peers(EventKind.NOTIFICATION_READ_ALL)
    return modified

  def on_notification(self, callback: Callback) -> Unsubscribe:
    return self.registry.subscribe(EventKind.NOTIFICATION, callback)

  def on_incident_update(self, callback: Callback) -> Unsubscribe:
    return self.registry.subscribe(EventKind.INCIDENT_UPDATE, callback)

  def on_equipment_update(self, callback: Callback) -> Unsubscribe:
    return self.registry.subscribe(EventKind.EQUIPMENT_UPDATE, callback)

  def on_dashboard_update(self, callback: Callback) -> Unsubscribe:
    return self.registry.subscribe(EventKind.DASHBOARD_UPDATE, callback)

  async def dispose(self) -> None:
    """Tear everything down; safe to call more than once."""
    if self._disposed:
      return
    self._disposed = True
    try:
      if self._user_id is not None and self.connection.is_connected:
        try:
          await self.connection.emit(EventKind.UNSUBSCRIBE, ChannelScope(user_id=self._user_id))
        except NotConnectedError as exc:
          logger.warning("Could not unsubscribe user=%s: %s", self._user_id, exc)
      await self.connection.disconnect()
    finally:
      self.registry.clear()
      self.store.reset()
      self.alerts.reset()
      await self.api.aclose()
      self._user_id = None
      logger.info("Notification session disposed")

  async def __aenter__(self) -> NotificationSession:
    return self

  async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
    await self.dispose()

  async def _notify_peers(self, kind: EventKind, payload: NotificationRead | None = None) -> None:
    # The REST write already succeeded; the channel event only keeps other tabs in sync.
    if not self.connection.is_connected:
      return
    try:
      await self.connection.emit(kind, payload)
    except NotConnectedError as exc:
      logger.warning("Could not publish %s: %s", kind.value, exc)
