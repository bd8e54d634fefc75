"""Notification listing, read state and the outbox dispatcher"""
import asyncio
from datetime import datetime, timedelta

import database
from conftest import auth_headers, ws_url
from models import Notification, NotificationType
from services.notification_service import NotificationDispatcher, queue_notification
from services.websocket_manager import EventType, WebSocketConnectionManager


def add_notification(user, message="Your appointment was accepted", created_at=None, **fields) -> Notification:
    with database.open_session() as session:
        notification = Notification(
            user_id=user.id,
            message=message,
            type=NotificationType.APPOINTMENT_ACCEPTED.value,
            event=EventType.APPOINTMENT_UPDATE.value,
            payload={},
            created_at=created_at or datetime.utcnow(),
            **fields
        )
        session.add(notification)
        session.commit()
        session.refresh(notification)
        return notification


def test_list_is_newest_first_and_only_mine(client, patient, other_patient):
    now = datetime.utcnow()
    add_notification(patient, "older", created_at=now - timedelta(minutes=5))
    add_notification(patient, "newer", created_at=now)
    add_notification(other_patient, "not mine")

    response = client.get("/api/notifications", headers=auth_headers(patient))

    assert response.status_code == 200
    assert [n["message"] for n in response.json()] == ["newer", "older"]


def test_list_is_capped_at_fifty(client, patient):
    now = datetime.utcnow()
    for i in range(55):
        add_notification(patient, f"n{i}", created_at=now + timedelta(seconds=i))

    response = client.get("/api/notifications", headers=auth_headers(patient))
    assert len(response.json()) == 50
    assert response.json()[0]["message"] == "n54"


def test_mark_read_is_idempotent(client, patient):
    notification = add_notification(patient)

    first = client.put(f"/api/notifications/{notification.id}/read", headers=auth_headers(patient))
    second = client.put(f"/api/notifications/{notification.id}/read", headers=auth_headers(patient))

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert second.json()["read"] is True


def test_mark_read_errors(client, patient, other_patient):
    notification = add_notification(patient)

    malformed = client.put("/api/notifications/123/read", headers=auth_headers(patient))
    assert malformed.status_code == 400
    assert malformed.json()["detail"] == "Invalid notification ID format"

    unknown = client.put(f"/api/notifications/{'a' * 32}/read", headers=auth_headers(patient))
    assert unknown.status_code == 404

    foreign = client.put(f"/api/notifications/{notification.id}/read", headers=auth_headers(other_patient))
    assert foreign.status_code == 403


def test_mark_read_emits_to_the_user_room(client, patient):
    notification = add_notification(patient)

    with client.websocket_connect(ws_url(patient)) as ws:
        ws.receive_json()
        client.put(f"/api/notifications/{notification.id}/read", headers=auth_headers(patient))

        frame = ws.receive_json()
        assert frame["event"] == "notificationsMarkedAsRead"
        assert frame["data"]["user_id"] == patient.id
        assert frame["data"]["notification_ids"] == [notification.id]
        assert frame["data"]["timestamp"]


def test_mark_all_read(client, patient, other_patient):
    add_notification(patient)
    add_notification(patient)
    add_notification(patient, read=True)
    add_notification(other_patient)

    with client.websocket_connect(ws_url(patient)) as ws:
        ws.receive_json()
        response = client.put("/api/notifications/read-all", headers=auth_headers(patient))

        assert response.status_code == 200
        assert response.json()["modified_count"] == 2

        frame = ws.receive_json()
        assert frame["event"] == "notificationsMarkedAsRead"
        assert frame["data"]["notification_ids"] is None

    remaining = client.get("/api/notifications", headers=auth_headers(other_patient)).json()
    assert remaining[0]["read"] is False


class RaisingManager:
    async def emit(self, room, event, data, require_delivery=False):
        raise RuntimeError("hub unavailable")


class RecordingManager:
    def __init__(self):
        self.emitted = []

    async def emit(self, room, event, data, require_delivery=False):
        self.emitted.append((room, event, data))
        return 1


def test_dispatch_failure_is_recorded_not_raised(patient):
    with database.open_session() as session:
        notification = queue_notification(
            session,
            user_id=patient.id,
            message="Your appointment was accepted",
            notification_type=NotificationType.APPOINTMENT_ACCEPTED,
            event=EventType.APPOINTMENT_UPDATE,
        )
        session.commit()
        session.refresh(notification)

        delivered = asyncio.run(NotificationDispatcher(RaisingManager()).dispatch(session, [notification]))
        notification_id = notification.id

    assert delivered == 0
    with database.open_session() as session:
        stored = session.get(Notification, notification_id)
        assert stored.dispatched_at is None
        assert stored.attempts == 1
        assert stored.last_error == "hub unavailable"


def test_dispatch_pending_retries_undelivered(patient):
    pending = add_notification(patient, "retry me")
    add_notification(patient, "already sent", dispatched_at=datetime.utcnow())
    add_notification(patient, "gave up", attempts=5)

    manager = RecordingManager()
    delivered = asyncio.run(NotificationDispatcher(manager).dispatch_pending(max_attempts=5, min_age=0))

    assert delivered == 1
    room, event, data = manager.emitted[0]
    assert room == patient.id
    assert event == "appointmentUpdate"
    assert data["message"] == "retry me"
    assert data["notification_id"] == pending.id

    with database.open_session() as session:
        assert session.get(Notification, pending.id).dispatched_at is not None


class BrokenSocket:
    async def send_json(self, frame):
        raise RuntimeError("connection reset")


class OpenSocket:
    def __init__(self):
        self.frames = []

    async def send_json(self, frame):
        self.frames.append(frame)


def queued(patient) -> Notification:
    with database.open_session() as session:
        notification = queue_notification(
            session,
            user_id=patient.id,
            message="Your appointment was accepted",
            notification_type=NotificationType.APPOINTMENT_ACCEPTED,
            event=EventType.APPOINTMENT_UPDATE,
        )
        session.commit()
        session.refresh(notification)
        return notification


def dispatch_with(manager, notification_id) -> int:
    with database.open_session() as session:
        notification = session.get(Notification, notification_id)
        return asyncio.run(NotificationDispatcher(manager).dispatch(session, [notification]))


def test_failed_live_send_stays_pending_for_retry(patient):
    manager = WebSocketConnectionManager()
    asyncio.run(manager.connect(BrokenSocket(), patient.id, "patient"))
    notification = queued(patient)

    assert dispatch_with(manager, notification.id) == 0

    with database.open_session() as session:
        stored = session.get(Notification, notification.id)
        assert stored.dispatched_at is None
        assert stored.attempts == 1
        assert "connection reset" in stored.last_error
    assert not manager.is_user_online(patient.id)


def test_one_open_session_is_enough_for_dispatch(patient):
    manager = WebSocketConnectionManager()
    healthy = OpenSocket()

    async def connect():
        await manager.connect(BrokenSocket(), patient.id, "patient")
        await manager.connect(healthy, patient.id, "patient")

    asyncio.run(connect())
    notification = queued(patient)

    assert dispatch_with(manager, notification.id) == 1
    assert healthy.frames[0]["data"]["notification_id"] == notification.id
    with database.open_session() as session:
        stored = session.get(Notification, notification.id)
        assert stored.dispatched_at is not None
        assert stored.last_error is None


def test_sweep_leaves_fresh_rows_to_their_request(patient):
    fresh = add_notification(patient, "just queued")
    stale = add_notification(patient, "left behind", created_at=datetime.utcnow() - timedelta(minutes=5))

    manager = RecordingManager()
    delivered = asyncio.run(NotificationDispatcher(manager).dispatch_pending(max_attempts=5, min_age=60))

    assert delivered == 1
    assert [data["notification_id"] for _, _, data in manager.emitted] == [stale.id]
    with database.open_session() as session:
        assert session.get(Notification, fresh.id).dispatched_at is None
