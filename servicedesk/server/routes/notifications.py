"""REST endpoints for the caller's notifications."""

from __future__ import annotations

import logging
from typing import Annotated, Literal

import msgspec
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection
from starlette.responses import Response

from servicedesk.core.database import get_db
from servicedesk.core.security import Principal, get_current_principal
from servicedesk.notifications.models import NotificationCategory, NotificationPagePayload, NotificationPriority, RelatedKind
from servicedesk.realtime.events import EventKind
from servicedesk.server.hub import PushHub
from servicedesk.server.repo import NewNotification, NotificationForbiddenError, NotificationNotFoundError, NotificationRepository, PageRequest, to_payload

logger = logging.getLogger(__name__)

router = APIRouter()

# Roles allowed to address notifications to other users.
_STAFF_ROLES = {"admin", "technician"}


class ModifiedResponse(msgspec.Struct, rename="camel"):
  success: bool
  modified_count: int


class DeletedResponse(msgspec.Struct, rename="camel"):
  success: bool
  deleted_count: int


class MessageResponse(msgspec.Struct):
  success: bool
  message: str


class UnreadCountResponse(msgspec.Struct, rename="camel"):
  unread_count: int


class CreateNotificationRequest(BaseModel):
  """Body of `POST /notifications`."""

  title: str = Field(min_length=1, max_length=200)
  message: str = Field(min_length=1, max_length=2000)
  type: str = Field(default="info", max_length=64)
  priority: str = Field(default="low", max_length=16)
  related_item_type: RelatedKind | None = Field(default=None, alias="relatedItemType")
  related_item_id: str | None = Field(default=None, alias="relatedItemId", max_length=64)
  user_id: str | None = Field(default=None, alias="userId", max_length=64)
  model_config = ConfigDict(extra="forbid", populate_by_name=True)


def _json(payload: msgspec.Struct, *, status_code: int = status.HTTP_200_OK) -> Response:
  return Response(content=msgspec.json.encode(payload), status_code=status_code, media_type="application/json")


def get_hub(connection: HTTPConnection) -> PushHub:
  return connection.app.state.hub


def _not_found() -> HTTPException:
  return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")


def _forbidden() -> HTTPException:
  return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to access this notification")


PrincipalDep = Annotated[Principal, Depends(get_current_principal)]
SessionDep = Annotated[AsyncSession, Depends(get_db)]


@router.get("/notifications")
async def list_notifications(
  principal: PrincipalDep,
  session: SessionDep,
  page: int = Query(1, ge=1),  # noqa: B008
  limit: int = Query(10, ge=1, le=100),  # noqa: B008
  unread_only: bool = Query(False, alias="unreadOnly"),  # noqa: B008
  category: str | None = Query(None, alias="type", max_length=64),  # noqa: B008
  related_kind: RelatedKind | None = Query(None, alias="relatedItemType"),  # noqa: B008
  sort_by: Literal["createdAt", "title"] = Query("createdAt", alias="sortBy"),  # noqa: B008
  sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),  # noqa: B008
) -> Response:
  """
  Return one page of the caller's notifications.

  `unreadCount` always counts every unread notification of the caller,
  independent of the filters applied to the page.
  """
  request = PageRequest(
    page=page,
    limit=limit,
    unread_only=unread_only,
    category=NotificationCategory(category).value if category else None,
    related_kind=related_kind.value if related_kind else None,
    sort_by=sort_by,
    sort_order=sort_order,
  )
  result = await NotificationRepository(session).list_page(principal.user_id, request)
  body = NotificationPagePayload(
    notifications=[to_payload(record) for record in result.records],
    total_count=result.total_count,
    total_pages=result.total_pages,
    unread_count=result.unread_count,
    page=page,
    limit=limit,
  )
  return _json(body)


@router.get("/notifications/unread-count")
async def unread_count(principal: PrincipalDep, session: SessionDep) -> Response:
  count = await NotificationRepository(session).unread_count(principal.user_id)
  return _json(UnreadCountResponse(unread_count=count))


@router.patch("/notifications/read-all")
async def mark_all_as_read(principal: PrincipalDep, session: SessionDep) -> Response:
  modified = await NotificationRepository(session).mark_all_read(principal.user_id)
  return _json(ModifiedResponse(success=True, modified_count=modified))


@router.patch("/notifications/{notification_id}/read")
async def mark_as_read(notification_id: str, principal: PrincipalDep, session: SessionDep) -> Response:
  try:
    record = await NotificationRepository(session).mark_read(principal.user_id, notification_id)
  except NotificationNotFoundError as exc:
    raise _not_found() from exc
  except NotificationForbiddenError as exc:
    raise _forbidden() from exc
  return _json(to_payload(record))


@router.delete("/notifications/{notification_id}")
async def delete_notification(notification_id: str, principal: PrincipalDep, session: SessionDep) -> Response:
  try:
    await NotificationRepository(session).delete(principal.user_id, notification_id)
  except NotificationNotFoundError as exc:
    raise _not_found() from exc
  except NotificationForbiddenError as exc:
    raise _forbidden() from exc
  return _json(MessageResponse(success=True, message="Notification deleted"))


@router.delete("/notifications")
async def clear_notifications(principal: PrincipalDep, session: SessionDep) -> Response:
  deleted = await NotificationRepository(session).delete_all(principal.user_id)
  return _json(DeletedResponse(success=True, deleted_count=deleted))


@router.post("/notifications", status_code=status.HTTP_201_CREATED)
async def create_notification(
  body: CreateNotificationRequest,
  principal: PrincipalDep,
  session: SessionDep,
  hub: Annotated[PushHub, Depends(get_hub)],
) -> Response:
  """Store a notification and push it to the recipient's live connections."""
  recipient = body.user_id or principal.user_id
  if recipient != principal.user_id and principal.role not in _STAFF_ROLES:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to notify other users")
  if bool(body.related_item_type) != bool(body.related_item_id):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="relatedItemType and relatedItemId must be provided together")

  entry = NewNotification(
    user_id=recipient,
    title=body.title,
    message=body.message,
    type=NotificationCategory(body.type).value,
    priority=NotificationPriority(body.priority).value,
    related_item_type=body.related_item_type.value if body.related_item_type else None,
    related_item_id=body.related_item_id,
  )
  record = await NotificationRepository(session).create(entry)
  payload = to_payload(record)
  delivered = await hub.send_to_user(recipient, EventKind.NOTIFICATION, payload)
  logger.debug("Pushed notification id=%s to %s live connections", record.id, delivered)
  return _json(payload, status_code=status.HTTP_201_CREATED)
