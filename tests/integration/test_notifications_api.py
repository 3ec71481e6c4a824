from __future__ import annotations

import pytest


def _create(client, headers, **body):
  payload = {"title": "Printer jam", "message": "Floor 2 printer needs attention"}
  payload.update(body)
  response = client.post("/api/notifications", json=payload, headers=headers)
  assert response.status_code == 201, response.text
  return response.json()


def test_requests_without_token_are_rejected(client) -> None:
  response = client.get("/api/notifications")
  assert response.status_code == 401
  assert response.json()["detail"] == "Not authenticated"
  assert "requestId" in response.json()
  assert response.headers["x-request-id"] == response.json()["requestId"]


def test_garbage_token_is_rejected(client) -> None:
  response = client.get("/api/notifications", headers={"Authorization": "Bearer not-a-jwt"})
  assert response.status_code == 401


def test_list_returns_page_and_counters(client, auth_headers) -> None:
  headers = auth_headers("u-1")
  for index in range(12):
    _create(client, headers, title=f"n{index:02d}")
  _create(client, auth_headers("u-2"), title="someone else's")

  response = client.get("/api/notifications", params={"page": 2, "limit": 5, "sortBy": "title", "sortOrder": "asc"}, headers=headers)

  body = response.json()
  assert response.status_code == 200
  assert body["totalCount"] == 12
  assert body["totalPages"] == 3
  assert body["unreadCount"] == 12
  assert body["page"] == 2 and body["limit"] == 5
  assert [item["title"] for item in body["notifications"]] == ["n05", "n06", "n07", "n08", "n09"]


def test_filters_narrow_the_page_but_not_the_unread_count(client, auth_headers) -> None:
  headers = auth_headers("u-1")
  first = _create(client, headers, type="incident_assigned", relatedItemType="incident", relatedItemId="INC-1")
  _create(client, headers, type="system")
  client.patch(f"/api/notifications/{first['id']}/read", headers=headers)

  unread = client.get("/api/notifications", params={"unreadOnly": "true"}, headers=headers).json()
  incidents = client.get("/api/notifications", params={"relatedItemType": "incident"}, headers=headers).json()
  by_type = client.get("/api/notifications", params={"type": "INCIDENT_ASSIGNED"}, headers=headers).json()

  assert unread["totalCount"] == 1 and unread["unreadCount"] == 1
  assert [item["id"] for item in incidents["notifications"]] == [first["id"]]
  assert incidents["notifications"][0]["relatedItemId"] == "INC-1"
  assert [item["id"] for item in by_type["notifications"]] == [first["id"]]


def test_unknown_category_is_stored_as_system(client, auth_headers) -> None:
  created = _create(client, auth_headers("u-1"), type="maintenance_window", priority="URGENT")
  assert created["type"] == "system"
  assert created["priority"] == "low"


def test_mark_as_read_is_idempotent(client, auth_headers) -> None:
  headers = auth_headers("u-1")
  created = _create(client, headers)

  first = client.patch(f"/api/notifications/{created['id']}/read", headers=headers).json()
  second = client.patch(f"/api/notifications/{created['id']}/read", headers=headers).json()

  assert first["isRead"] is True
  assert first["readAt"] == second["readAt"]
  assert client.get("/api/notifications/unread-count", headers=headers).json() == {"unreadCount": 0}


def test_other_users_notification_is_forbidden(client, auth_headers) -> None:
  created = _create(client, auth_headers("owner"))
  intruder = auth_headers("intruder")

  assert client.patch(f"/api/notifications/{created['id']}/read", headers=intruder).status_code == 403
  assert client.delete(f"/api/notifications/{created['id']}", headers=intruder).status_code == 403


def test_unknown_id_is_not_found(client, auth_headers) -> None:
  response = client.delete("/api/notifications/does-not-exist", headers=auth_headers("u-1"))
  assert response.status_code == 404
  assert response.json()["detail"] == "Notification not found"


def test_mark_all_and_clear_report_counts(client, auth_headers) -> None:
  headers = auth_headers("u-1")
  for _ in range(3):
    _create(client, headers)
  other = _create(client, auth_headers("u-2"))

  marked = client.patch("/api/notifications/read-all", headers=headers).json()
  cleared = client.delete("/api/notifications", headers=headers).json()

  assert marked == {"success": True, "modifiedCount": 3}
  assert cleared == {"success": True, "deletedCount": 3}
  remaining = client.get("/api/notifications", headers=auth_headers("u-2")).json()
  assert [item["id"] for item in remaining["notifications"]] == [other["id"]]


def test_delete_single_notification(client, auth_headers) -> None:
  headers = auth_headers("u-1")
  created = _create(client, headers)

  response = client.delete(f"/api/notifications/{created['id']}", headers=headers)

  assert response.json() == {"success": True, "message": "Notification deleted"}
  assert client.get("/api/notifications", headers=headers).json()["totalCount"] == 0


def test_only_staff_may_notify_other_users(client, auth_headers) -> None:
  body = {"title": "Assigned", "message": "INC-3", "userId": "u-2"}

  denied = client.post("/api/notifications", json=body, headers=auth_headers("u-1"))
  allowed = client.post("/api/notifications", json=body, headers=auth_headers("tech-1", role="technician"))

  assert denied.status_code == 403
  assert allowed.status_code == 201
  assert client.get("/api/notifications/unread-count", headers=auth_headers("u-2")).json() == {"unreadCount": 1}


@pytest.mark.parametrize(
  "body",
  [
    {"title": "", "message": "m"},
    {"title": "t", "message": "m", "surprise": True},
    {"title": "t", "message": "m", "relatedItemType": "incident"},
    {"title": "t", "message": "m", "relatedItemType": "invoice", "relatedItemId": "x"},
  ],
)
def test_invalid_create_bodies_are_rejected(client, auth_headers, body) -> None:
  response = client.post("/api/notifications", json=body, headers=auth_headers("u-1"))
  assert response.status_code in {400, 422}
  assert "requestId" in response.json()


def test_invalid_query_parameters_are_rejected(client, auth_headers) -> None:
  response = client.get("/api/notifications", params={"sortBy": "priority"}, headers=auth_headers("u-1"))
  assert response.status_code == 422


def test_health_reports_online_counts(client) -> None:
  body = client.get("/health").json()
  assert body["status"] == "ok"
  assert body["online"] == {"users": 0, "connections": 0, "roles": {}}
