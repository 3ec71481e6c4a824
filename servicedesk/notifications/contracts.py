"""Error taxonomy and collaborator contracts for the notification pipeline."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
  from servicedesk.notifications.models import Notification, NotificationDraft, NotificationPage, NotificationQuery


class ServiceDeskError(Exception):
  """Base class for all notification pipeline failures."""


class AuthenticationMissingError(ServiceDeskError):
  """Raised when no bearer credential is available; never retried."""


class ConnectionFailedError(ServiceDeskError):
  """Raised when a single attempt to open the push channel fails."""


class ReconnectExhaustedError(ConnectionFailedError):
  """Raised when the reconnect policy has run out of attempts."""

  def __init__(self, attempts: int) -> None:
    super().__init__(f"Failed to connect after {attempts} attempts")
    self.attempts = attempts


class NotConnectedError(ServiceDeskError):
  """Raised when sending over a channel that is not connected."""


class EventDecodeError(ServiceDeskError):
  """Raised when an inbound frame is not a valid event envelope."""


class RequestFailedError(ServiceDeskError):
  """Raised when the REST backend rejects a call or cannot be reached."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.status_code = status_code


CredentialProvider = Callable[[], str | None]


class NotificationsApi(Protocol):
  """REST operations the notification store depends on."""

  async def list_notifications(self, query: NotificationQuery) -> NotificationPage:
    """Return one page of notifications plus server-side counters."""

  async def mark_as_read(self, notification_id: str) -> Notification:
    """Mark one notification read and return the updated record."""

  async def mark_all_as_read(self) -> int:
    """Mark every notification read and return the modified count."""

  async def delete(self, notification_id: str) -> None:
    """Delete one notification."""

  async def clear_all(self) -> int:
    """Delete every notification and return the deleted count."""

  async def create(self, draft: NotificationDraft) -> Notification:
    """Create a notification and return the server's record."""


class Channel(Protocol):
  """The subset of a WebSocket client connection used by the connection manager."""

  async def send(self, message: str) -> None:
    """Send one text frame."""

  async def recv(self) -> str | bytes:
    """Receive one frame; raises when the channel closes."""

  async def close(self, code: int = 1000, reason: str = "") -> None:
    """Close the channel."""


