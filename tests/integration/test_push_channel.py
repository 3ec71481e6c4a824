from __future__ import annotations

import json

import pytest
from starlette.websockets import WebSocketDisconnect

from servicedesk.realtime.events import IncidentUpdate


def _frame(event: str, data: dict | None = None) -> str:
  return json.dumps({"event": event, "data": data or {}})


def test_missing_token_closes_with_4401(client) -> None:
  with client.websocket_connect("/ws") as websocket:
    with pytest.raises(WebSocketDisconnect) as excinfo:
      websocket.receive_text()
  assert excinfo.value.code == 4401


def test_invalid_token_closes_with_4401(client) -> None:
  with client.websocket_connect("/ws?token=bogus") as websocket:
    with pytest.raises(WebSocketDisconnect) as excinfo:
      websocket.receive_text()
  assert excinfo.value.code == 4401


def test_created_notification_is_pushed_to_owner(client, auth_headers, token_for) -> None:
  with client.websocket_connect(f"/ws?token={token_for('u-1')}") as websocket:
    response = client.post("/api/notifications", json={"title": "Assigned", "message": "INC-9", "priority": "high"}, headers=auth_headers("u-1"))
    message = json.loads(websocket.receive_text())

  assert message["event"] == "notification"
  assert message["data"]["id"] == response.json()["id"]
  assert message["data"]["priority"] == "high"


def test_header_authentication_is_accepted(client, auth_headers) -> None:
  with client.websocket_connect("/ws", headers=auth_headers("u-1")) as websocket:
    client.post("/api/notifications", json={"title": "t", "message": "m"}, headers=auth_headers("u-1"))
    assert json.loads(websocket.receive_text())["event"] == "notification"


def test_unsubscribe_pauses_user_events(client, auth_headers, token_for) -> None:
  with client.websocket_connect(f"/ws?token={token_for('u-1')}") as websocket:
    websocket.send_text(_frame("unsubscribe", {"userId": "u-1"}))
    # A rejected frame acts as a barrier: its error reply proves the unsubscribe was applied.
    websocket.send_text(_frame("subscribe", {"userId": "u-2"}))
    assert json.loads(websocket.receive_text()) == {"event": "error", "data": {"message": "Cannot subscribe to another user's channel"}}

    client.post("/api/notifications", json={"title": "muted", "message": "m"}, headers=auth_headers("u-1"))
    websocket.send_text(_frame("subscribe", {"userId": "u-1"}))
    websocket.send_text(_frame("telemetry"))
    assert json.loads(websocket.receive_text())["event"] == "error"

    client.post("/api/notifications", json={"title": "audible", "message": "m"}, headers=auth_headers("u-1"))
    message = json.loads(websocket.receive_text())

  assert message["data"]["title"] == "audible"


def test_read_events_are_persisted(client, auth_headers, token_for) -> None:
  headers = auth_headers("u-1")
  first = client.post("/api/notifications", json={"title": "a", "message": "m"}, headers=headers).json()
  client.post("/api/notifications", json={"title": "b", "message": "m"}, headers=headers)

  with client.websocket_connect(f"/ws?token={token_for('u-1')}") as websocket:
    websocket.send_text(_frame("notification:read", {"notificationId": first["id"]}))
    websocket.send_text(_frame("notification:read", {"notificationId": "missing"}))
    assert json.loads(websocket.receive_text()) == {"event": "error", "data": {"message": "Notification not found"}}
    assert client.get("/api/notifications/unread-count", headers=headers).json() == {"unreadCount": 1}

    websocket.send_text(_frame("notification:readAll"))
    websocket.send_text(_frame("bogus"))
    websocket.receive_text()
    assert client.get("/api/notifications/unread-count", headers=headers).json() == {"unreadCount": 0}


def test_incident_updates_reach_room_subscribers(app, client, token_for) -> None:
  hub = app.state.hub
  with client.websocket_connect(f"/ws?token={token_for('u-1')}") as watcher, client.websocket_connect(f"/ws?token={token_for('u-2')}") as bystander:
    watcher.send_text(_frame("subscribe:incident", {"incidentId": "INC-5"}))
    watcher.send_text(_frame("bogus"))
    watcher.receive_text()
    bystander.send_text(_frame("bogus"))
    bystander.receive_text()

    assert hub.online_counts() == {"users": 2, "connections": 2, "roles": {"user": 2}}
    delivered = client.portal.call(hub.broadcast_incident_update, IncidentUpdate(incident_id="INC-5", status="resolved"))
    update = json.loads(watcher.receive_text())

  assert delivered == 1
  assert update == {"event": "incident:update", "data": {"incidentId": "INC-5", "status": "resolved"}}
