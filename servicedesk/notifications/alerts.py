"""Transient toasts and the persistent real-time banner."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from servicedesk.notifications.models import Notification, NotificationPriority

logger = logging.getLogger(__name__)

REALTIME_UNAVAILABLE = "Real-time updates are unavailable. Reconnect to resume live notifications."
REALTIME_AUTH_REJECTED = "Real-time updates stopped because your session was rejected. Sign in again to resume."

AUTO_CLOSE_SECONDS: dict[NotificationPriority, float] = {
  NotificationPriority.HIGH: 10.0,
  NotificationPriority.MEDIUM: 7.0,
  NotificationPriority.LOW: 5.0,
}

_PRIORITY_LEVEL = {
  NotificationPriority.HIGH: "error",
  NotificationPriority.MEDIUM: "warning",
  NotificationPriority.LOW: "info",
}


class AlertLevel(str, Enum):
  INFO = "info"
  SUCCESS = "success"
  WARNING = "warning"
  ERROR = "error"


@dataclass(frozen=True)
class Alert:
  level: AlertLevel
  message: str
  auto_close_seconds: float | None
  persistent: bool = False
  notification_id: str | None = None


AlertListener = Callable[[Alert], None]


class AlertCenter:
  """Holds user-visible alerts and fans them out to whatever renders them."""

  def __init__(self, *, max_toasts: int = 20) -> None:
    self._toasts: deque[Alert] = deque(maxlen=max_toasts)
    self._banner: Alert | None = None
    self._listeners: list[AlertListener] = []

  @property
  def banner(self) -> Alert | None:
    return self._banner

  @property
  def toasts(self) -> list[Alert]:
    return list(self._toasts)

  def add_listener(self, listener: AlertListener) -> Callable[[], None]:
    self._listeners.append(listener)

    def remove() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return remove

  def toast(self, level: AlertLevel, message: str, *, priority: NotificationPriority = NotificationPriority.LOW, notification_id: str | None = None) -> Alert:
    """Queue a dismissible alert."""
    alert = Alert(level=level, message=message, auto_close_seconds=AUTO_CLOSE_SECONDS[priority], notification_id=notification_id)
    self._toasts.append(alert)
    self._emit(alert)
    return alert

  def error(self, message: str) -> Alert:
    return self.toast(AlertLevel.ERROR, message, priority=NotificationPriority.HIGH)

  def success(self, message: str) -> Alert:
    return self.toast(AlertLevel.SUCCESS, message)

  def notify_for(self, notification: Notification) -> Alert:
    """Surface an incoming notification as a toast styled by its priority."""
    level = AlertLevel(_PRIORITY_LEVEL[notification.priority])
    return self.toast(level, f"{notification.title}: {notification.message}", priority=notification.priority, notification_id=notification.key)

  def dismiss(self, alert: Alert) -> None:
    try:
      self._toasts.remove(alert)
    except ValueError:
      return

  def show_banner(self, message: str = REALTIME_UNAVAILABLE) -> Alert:
    """Raise the persistent banner; it stays until clear_banner()."""
    self._banner = Alert(level=AlertLevel.ERROR, message=message, auto_close_seconds=None, persistent=True)
    self._emit(self._banner)
    return self._banner

  def clear_banner(self) -> None:
    self._banner = None

  def reset(self) -> None:
    self._toasts.clear()
    self._banner = None

  def _emit(self, alert: Alert) -> None:
    for listener in list(self._listeners):
      try:
        listener(alert)
      except Exception:  # noqa: BLE001
        logger.error("Alert listener failed for %s alert", alert.level.value, exc_info=True)
