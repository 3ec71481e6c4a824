"""httpx client for the notifications REST API."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
import msgspec

from servicedesk.config import Settings
from servicedesk.notifications.contracts import AuthenticationMissingError, CredentialProvider, NotificationsApi, RequestFailedError
from servicedesk.notifications.models import Notification, NotificationDraft, NotificationPage, NotificationPagePayload, NotificationPayload, NotificationQuery

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Modified(msgspec.Struct, rename="camel"):
  success: bool = True
  modified_count: int = 0


class _Deleted(msgspec.Struct, rename="camel"):
  success: bool = True
  deleted_count: int = 0


class _UnreadCount(msgspec.Struct, rename="camel"):
  unread_count: int


def _error_message(response: httpx.Response) -> str:
  """Pull the server's message out of an error body."""
  try:
    body = response.json()
  except ValueError:
    body = None
  if isinstance(body, dict):
    for key in ("detail", "message", "error"):
      value = body.get(key)
      if isinstance(value, str) and value:
        return value
      if value:
        return str(value)
  return f"Request failed with status {response.status_code}"


class NotificationsApiClient(NotificationsApi):
  """One HTTP call per operation; every failure becomes a RequestFailedError."""

  def __init__(self, base_url: str, *, credential_provider: CredentialProvider, timeout_seconds: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._credential_provider = credential_provider
    # Never trust environment proxy variables for API calls.
    self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_seconds, transport=transport, trust_env=False)

  @classmethod
  def from_settings(cls, settings: Settings, *, credential_provider: CredentialProvider, transport: httpx.AsyncBaseTransport | None = None) -> NotificationsApiClient:
    return cls(settings.api_url, credential_provider=credential_provider, timeout_seconds=settings.http_timeout_seconds, transport=transport)

  async def aclose(self) -> None:
    await self._client.aclose()

  def _headers(self) -> dict[str, str]:
    token = self._credential_provider()
    if not token:
      raise AuthenticationMissingError("Authentication token not found")
    return {"authorization": f"Bearer {token}"}

  async def _request(self, method: str, path: str, *, params: dict[str, str] | None = None, json: dict[str, Any] | None = None) -> bytes:
    try:
      response = await self._client.request(method, path, params=params, json=json, headers=self._headers())
      response.raise_for_status()
    except httpx.HTTPStatusError as e:
      message = _error_message(e.response)
      logger.warning("%s %s returned %s: %s", method, path, e.response.status_code, message)
      raise RequestFailedError(message, status_code=e.response.status_code) from e
    except httpx.RequestError as e:
      logger.error("%s %s failed: %s", method, path, e)
      raise RequestFailedError(f"Network error: {e}") from e
    return response.content

  def _decode(self, content: bytes, struct_type: type[T]) -> T:
    try:
      return msgspec.json.decode(content, type=struct_type)
    except msgspec.DecodeError as exc:
      raise RequestFailedError(f"Unexpected response payload: {exc}") from exc

  async def list_notifications(self, query: NotificationQuery) -> NotificationPage:
    content = await self._request("GET", "/notifications", params=query.to_params())
    return self._decode(content, NotificationPagePayload).to_page()

  async def unread_count(self) -> int:
    content = await self._request("GET", "/notifications/unread-count")
    return self._decode(content, _UnreadCount).unread_count

  async def mark_as_read(self, notification_id: str) -> Notification:
    if not notification_id:
      raise ValueError("Notification ID is required")
    content = await self._request("PATCH", f"/notifications/{notification_id}/read")
    return Notification.from_payload(self._decode(content, NotificationPayload))

  async def mark_all_as_read(self) -> int:
    content = await self._request("PATCH", "/notifications/read-all")
    return self._decode(content, _Modified).modified_count

  async def delete(self, notification_id: str) -> None:
    if not notification_id:
      raise ValueError("Notification ID is required")
    await self._request("DELETE", f"/notifications/{notification_id}")

  async def clear_all(self) -> int:
    content = await self._request("DELETE", "/notifications")
    return self._decode(content, _Deleted).deleted_count

  async def create(self, draft: NotificationDraft) -> Notification:
    content = await self._request("POST", "/notifications", json=draft.to_request())
    return Notification.from_payload(self._decode(content, NotificationPayload))
