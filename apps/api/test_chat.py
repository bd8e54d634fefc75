"""Chat group resolution, message send and history"""
import os

from sqlmodel import select

import database
from config import get_settings
from conftest import auth_headers, ws_url
from models import ChatGroup, Message


def create_group(client, sender, recipient):
    return client.post(
        "/api/messages/create-chat-group",
        json={"recipient_id": recipient.id},
        headers=auth_headers(sender),
    )


def test_chat_group_resolution_is_order_independent_and_idempotent(client, doctor, patient):
    first = create_group(client, patient, doctor)
    assert first.status_code == 200
    assert first.json()["created"] is True

    again = create_group(client, patient, doctor).json()
    reversed_pair = create_group(client, doctor, patient).json()

    assert again == {"chat_group_id": first.json()["chat_group_id"], "created": False}
    assert reversed_pair["chat_group_id"] == first.json()["chat_group_id"]

    with database.open_session() as session:
        assert len(session.exec(select(ChatGroup)).all()) == 1


def test_chat_group_validation(client, patient):
    missing = client.post("/api/messages/create-chat-group", json={}, headers=auth_headers(patient))
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Recipient ID is required"

    malformed = create_group_raw(client, patient, "12345")
    assert malformed.status_code == 400
    assert malformed.json()["detail"] == "Invalid recipient ID"

    unknown = create_group_raw(client, patient, "a" * 32)
    assert unknown.status_code == 404
    assert unknown.json()["detail"] == "Recipient not found"


def create_group_raw(client, sender, recipient_id):
    return client.post(
        "/api/messages/create-chat-group",
        json={"recipient_id": recipient_id},
        headers=auth_headers(sender),
    )


def test_new_group_is_announced_to_both_rooms_and_usable(client, doctor, patient):
    with client.websocket_connect(ws_url(patient)) as patient_ws, \
            client.websocket_connect(ws_url(doctor)) as doctor_ws:
        patient_ws.receive_json()
        doctor_ws.receive_json()

        group_id = create_group(client, doctor, patient).json()["chat_group_id"]

        for ws in (patient_ws, doctor_ws):
            frame = ws.receive_json()
            assert frame["event"] == "chatGroupUpdate"
            assert frame["data"]["id"] == group_id
            assert sorted(frame["data"]["participants"]) == sorted([doctor.id, patient.id])
            assert frame["data"]["last_message"] is None

        response = client.post(
            "/api/messages",
            data={"recipient_id": patient.id, "chat_group_id": group_id, "content": "Please come in on Monday"},
            headers=auth_headers(doctor),
        )
        assert response.status_code == 200

        for ws in (patient_ws, doctor_ws):
            received = ws.receive_json()
            assert received["event"] == "receiveMessage"
            assert received["data"]["content"] == "Please come in on Monday"
            update = ws.receive_json()
            assert update["event"] == "chatGroupUpdate"
            assert update["data"]["last_message"]["content"] == "Please come in on Monday"


def test_message_requires_content_or_attachment(client, doctor, patient):
    group_id = create_group(client, patient, doctor).json()["chat_group_id"]

    response = client.post(
        "/api/messages",
        data={"recipient_id": doctor.id, "chat_group_id": group_id, "content": ""},
        headers=auth_headers(patient),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Content or attachment required"

    with_file = client.post(
        "/api/messages",
        data={"recipient_id": doctor.id, "chat_group_id": group_id},
        files={"attachment": ("scan.pdf", b"%PDF-1.4 test", "application/pdf")},
        headers=auth_headers(patient),
    )
    assert with_file.status_code == 200
    body = with_file.json()
    assert body["content"] == ""
    assert body["attachment"]["name"] == "scan.pdf"
    assert body["attachment"]["type"] == "application/pdf"
    assert body["attachment"]["url"].startswith("/uploads/")

    stored = os.path.join(get_settings().upload_dir, body["attachment"]["url"].rsplit("/", 1)[-1])
    assert os.path.exists(stored)


def test_attachment_policy(client, doctor, patient):
    group_id = create_group(client, patient, doctor).json()["chat_group_id"]
    form = {"recipient_id": doctor.id, "chat_group_id": group_id}

    wrong_type = client.post(
        "/api/messages",
        data=form,
        files={"attachment": ("run.sh", b"echo hi", "text/x-shellscript")},
        headers=auth_headers(patient),
    )
    assert wrong_type.status_code == 400

    too_big = client.post(
        "/api/messages",
        data=form,
        files={"attachment": ("big.png", b"0" * (5 * 1024 * 1024 + 1), "image/png")},
        headers=auth_headers(patient),
    )
    assert too_big.status_code == 400
    assert too_big.json()["detail"] == "File size must be less than 5MB"


def test_last_message_tracks_latest_message(client, doctor, patient):
    group_id = create_group(client, patient, doctor).json()["chat_group_id"]

    for sender, recipient, text in [(patient, doctor, "first"), (doctor, patient, "second")]:
        client.post(
            "/api/messages",
            data={"recipient_id": recipient.id, "chat_group_id": group_id, "content": text},
            headers=auth_headers(sender),
        )

    with database.open_session() as session:
        group = session.get(ChatGroup, group_id)
        latest = session.exec(
            select(Message).where(Message.chat_group_id == group_id).order_by(Message.created_at.desc())
        ).first()
        assert group.last_message["content"] == latest.content == "second"
        assert group.last_message["sender_id"] == doctor.id


def test_message_send_validation_order(client, doctor, patient, other_patient):
    group_id = create_group(client, patient, doctor).json()["chat_group_id"]

    def send(user, **form):
        return client.post("/api/messages", data=form, headers=auth_headers(user))

    assert send(patient, chat_group_id=group_id, content="x").json()["detail"] == "Recipient ID is required"
    assert send(patient, recipient_id=doctor.id, content="x").json()["detail"] == "Chat group ID is required"
    assert send(patient, recipient_id=doctor.id, chat_group_id="bad", content="x").json()["detail"] == "Invalid chat group ID"

    unknown_group = send(patient, recipient_id=doctor.id, chat_group_id="d" * 32, content="x")
    assert unknown_group.status_code == 404

    outsider = send(other_patient, recipient_id=doctor.id, chat_group_id=group_id, content="x")
    assert outsider.status_code == 403


def test_history_is_oldest_first_and_participants_only(client, doctor, patient, other_patient):
    group_id = create_group(client, patient, doctor).json()["chat_group_id"]
    for text in ["one", "two", "three"]:
        client.post(
            "/api/messages",
            data={"recipient_id": doctor.id, "chat_group_id": group_id, "content": text},
            headers=auth_headers(patient),
        )

    history = client.get(f"/api/messages?chat_group_id={group_id}", headers=auth_headers(doctor))
    assert history.status_code == 200
    assert [m["content"] for m in history.json()] == ["one", "two", "three"]

    assert client.get("/api/messages", headers=auth_headers(doctor)).status_code == 400
    assert client.get(f"/api/messages?chat_group_id={group_id}", headers=auth_headers(other_patient)).status_code == 403


def test_available_users_and_chat_groups(client, doctor, other_doctor, patient):
    group_id = create_group(client, patient, doctor).json()["chat_group_id"]
    client.post(
        "/api/messages",
        data={"recipient_id": doctor.id, "chat_group_id": group_id, "content": "hello"},
        headers=auth_headers(patient),
    )

    available = client.get("/api/messages/available-users", headers=auth_headers(patient)).json()
    by_id = {user["id"]: user for user in available}
    assert set(by_id) == {doctor.id, other_doctor.id}
    assert by_id[doctor.id]["chat_group_id"] == group_id
    assert by_id[doctor.id]["last_message"]["content"] == "hello"
    assert by_id[other_doctor.id]["chat_group_id"] is None

    groups = client.get("/api/messages/chat-groups", headers=auth_headers(doctor)).json()
    assert len(groups) == 1
    assert groups[0]["other_user"]["id"] == patient.id


def test_message_cannot_be_addressed_outside_the_group(client, doctor, patient, other_patient):
    group_id = create_group(client, patient, doctor).json()["chat_group_id"]

    with client.websocket_connect(ws_url(other_patient)) as outsider_ws:
        outsider_ws.receive_json()
        response = client.post(
            "/api/messages",
            data={"recipient_id": other_patient.id, "chat_group_id": group_id, "content": "hello"},
            headers=auth_headers(patient),
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Recipient is not a participant in this chat group"

        to_self = client.post(
            "/api/messages",
            data={"recipient_id": patient.id, "chat_group_id": group_id, "content": "hello"},
            headers=auth_headers(patient),
        )
        assert to_self.status_code == 403

        # Nothing reached the outsider's room: the next frame answers its own unknown event
        outsider_ws.send_json({"event": "ping", "data": {}})
        assert outsider_ws.receive_json()["event"] == "error"

    with database.open_session() as session:
        assert session.exec(select(Message)).all() == []
        assert session.get(ChatGroup, group_id).last_message is None


def test_chat_group_with_yourself_is_refused(client, patient):
    response = create_group(client, patient, patient)
    assert response.status_code == 400
    assert response.json()["detail"] == "You cannot start a chat group with yourself"

    with database.open_session() as session:
        assert session.exec(select(ChatGroup)).all() == []
