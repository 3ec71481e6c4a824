from __future__ import annotations

import datetime

import pytest

from servicedesk.notifications.models import (
  ConfirmedId,
  Notification,
  NotificationCategory,
  NotificationDraft,
  NotificationFilter,
  NotificationPayload,
  NotificationPriority,
  NotificationQuery,
  NotificationSort,
  PendingId,
  RelatedEntity,
  RelatedKind,
  parse_notification_id,
)
from servicedesk.utils.ids import generate_temp_id, is_temp_id


def test_unknown_category_decodes_to_system() -> None:
  assert NotificationCategory("INCIDENT_ASSIGNED") is NotificationCategory.INCIDENT_ASSIGNED
  assert NotificationCategory("maintenance_window") is NotificationCategory.SYSTEM


def test_unknown_priority_falls_back_to_low() -> None:
  assert NotificationPriority("HIGH") is NotificationPriority.HIGH
  assert NotificationPriority("urgent") is NotificationPriority.LOW


def test_temp_ids_parse_as_pending() -> None:
  temp_id = generate_temp_id()
  assert is_temp_id(temp_id)
  assert parse_notification_id(temp_id) == PendingId(temp_id)
  assert parse_notification_id("6c1f") == ConfirmedId("6c1f")


def test_from_payload_maps_related_entity_and_identity() -> None:
  payload = NotificationPayload(id="n1", title="t", message="m", type="equipment_status_changed", priority="medium", related_item_type="Equipment", related_item_id="eq-4")

  record = Notification.from_payload(payload)

  assert record.id == ConfirmedId("n1")
  assert record.category is NotificationCategory.EQUIPMENT_STATUS_CHANGED
  assert record.related == RelatedEntity(kind=RelatedKind.EQUIPMENT, entity_id="eq-4")
  assert not record.is_pending


def test_from_payload_ignores_unknown_related_kind() -> None:
  record = Notification.from_payload(NotificationPayload(id="n1", related_item_type="invoice", related_item_id="x"))
  assert record.related is None


def test_as_read_sets_read_at_once() -> None:
  first = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)
  record = Notification(id=ConfirmedId("n1"), title="t", message="m")

  read = record.as_read(first)
  again = read.as_read(datetime.datetime(2025, 1, 1, tzinfo=datetime.UTC))

  assert read.is_read and read.read_at == first
  assert again is read


def test_confirmed_keeps_original_created_at() -> None:
  created = datetime.datetime(2024, 3, 1, tzinfo=datetime.UTC)
  pending = Notification(id=PendingId("tmp-abc"), title="t", message="m", created_at=created)
  server = Notification(id=ConfirmedId("n9"), title="t", message="m", created_at=created + datetime.timedelta(seconds=3))

  confirmed = pending.confirmed(server)

  assert confirmed.id == ConfirmedId("n9")
  assert confirmed.created_at == created


def test_draft_request_body_uses_wire_names() -> None:
  draft = NotificationDraft(title="Disk full", message="Server 3", category=NotificationCategory.WARNING, priority=NotificationPriority.HIGH, related=RelatedEntity(RelatedKind.EQUIPMENT, "srv-3"), user_id="u2")
  assert draft.to_request() == {"title": "Disk full", "message": "Server 3", "type": "warning", "priority": "high", "relatedItemType": "equipment", "relatedItemId": "srv-3", "userId": "u2"}


def test_query_params_include_only_active_filters() -> None:
  query = NotificationQuery(page=2, page_size=25, filter=NotificationFilter(unread_only=True, category=NotificationCategory.SYSTEM), sort=NotificationSort(field="title", order="asc"))
  assert query.to_params() == {"page": "2", "limit": "25", "sortBy": "title", "sortOrder": "asc", "unreadOnly": "true", "type": "system"}


@pytest.mark.parametrize("kwargs", [{"field": "priority"}, {"order": "sideways"}])
def test_sort_rejects_unknown_values(kwargs) -> None:
  with pytest.raises(ValueError):
    NotificationSort(**kwargs)


def test_query_rejects_page_zero() -> None:
  with pytest.raises(ValueError):
    NotificationQuery(page=0)
