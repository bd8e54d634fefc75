"""
Chat groups and messages between two users.

A chat group is keyed by the sorted participant pair, so resolving a group is
order-independent. Every persisted message is fanned out to both
participants' rooms together with the group's new last-message snapshot.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from fastapi import HTTPException, UploadFile, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, or_

from models import User, UserRole, ChatGroup, Message
from services.websocket_manager import ws_manager, EventType
from utils.storage import read_attachment, save_attachment
from validators.business_rules import get_business_rules
from validators.id_validator import validate_id, is_valid_id

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """A sendMessage frame that cannot be relayed; the message goes back as an error event"""


def participant_key(user_a: str, user_b: str) -> str:
    first, second = sorted([user_a, user_b])
    return f"{first}:{second}"


def user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "specialization": user.specialization,
        "profile_picture": user.profile_picture,
    }


def attachment_payload(message: Message) -> Optional[Dict[str, Any]]:
    if not message.attachment_url:
        return None
    return {
        "url": message.attachment_url,
        "type": message.attachment_type,
        "name": message.attachment_name,
    }


def message_payload(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "sender_id": message.sender_id,
        "recipient_id": message.recipient_id,
        "chat_group_id": message.chat_group_id,
        "content": message.content,
        "attachment": attachment_payload(message),
        "read": message.read,
        "created_at": message.created_at,
    }


def chat_group_payload(group: ChatGroup) -> Dict[str, Any]:
    return {
        "id": group.id,
        "participants": group.participants,
        "last_message": group.last_message,
        "created_at": group.created_at,
        "updated_at": group.updated_at,
    }


def last_message_snapshot(message: Message) -> Dict[str, Any]:
    """JSON-ready copy of the newest message stored on its group"""
    return jsonable_encoder({
        "content": message.content or message.attachment_name,
        "sender_id": message.sender_id,
        "created_at": message.created_at,
        "attachment": attachment_payload(message),
    })


def find_chat_group(session: Session, user_a: str, user_b: str) -> Optional[ChatGroup]:
    return session.exec(
        select(ChatGroup).where(ChatGroup.participant_key == participant_key(user_a, user_b))
    ).first()


def get_user_or_404(session: Session, user_id: str, detail: str) -> User:
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return user


def get_group_for_participant(session: Session, chat_group_id: str, user_id: str) -> ChatGroup:
    group = session.get(ChatGroup, chat_group_id)
    if not group:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat group not found")
    if user_id not in group.participants:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a participant in this chat group"
        )
    return group


async def resolve_chat_group(session: Session, sender: User, recipient_id: Optional[str]) -> Tuple[ChatGroup, bool]:
    """Return the pair's chat group, creating it on first contact"""
    validate_id(recipient_id, "recipient ID")
    if recipient_id == sender.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot start a chat group with yourself"
        )
    get_user_or_404(session, recipient_id, "Recipient not found")
    get_user_or_404(session, sender.id, "Sender not found")

    group = find_chat_group(session, sender.id, recipient_id)
    if group:
        return group, False

    first, second = sorted([sender.id, recipient_id])
    group = ChatGroup(
        participant_a=first,
        participant_b=second,
        participant_key=participant_key(first, second),
    )
    session.add(group)
    try:
        session.commit()
    except IntegrityError:
        # A concurrent request created the pair's group first
        session.rollback()
        group = find_chat_group(session, sender.id, recipient_id)
        if group is None:
            raise
        return group, False

    session.refresh(group)
    logger.info(f"Chat group {group.id} created between {first} and {second}")

    await ws_manager.emit_to_rooms(group.participants, EventType.CHAT_GROUP_UPDATE.value, chat_group_payload(group))
    return group, True


async def send_message(
    session: Session,
    sender: User,
    recipient_id: Optional[str],
    chat_group_id: Optional[str],
    content: Optional[str],
    file: Optional[UploadFile] = None,
) -> Message:
    """Persist a message, update the group's last message, and fan it out"""
    validate_id(recipient_id, "recipient ID")
    validate_id(chat_group_id, "chat group ID")
    get_user_or_404(session, recipient_id, "Recipient not found")
    get_user_or_404(session, sender.id, "Sender not found")

    content = (content or "").strip()
    has_file = file is not None and bool(file.filename)
    if not content and not has_file:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Content or attachment required"
        )

    attachment = await read_attachment(file) if has_file else None
    group = get_group_for_participant(session, chat_group_id, sender.id)
    if recipient_id == sender.id or recipient_id not in group.participants:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Recipient is not a participant in this chat group"
        )

    message = Message(
        sender_id=sender.id,
        recipient_id=recipient_id,
        chat_group_id=group.id,
        content=content,
    )
    if attachment:
        message.attachment_url = save_attachment(attachment)
        message.attachment_type = attachment.content_type
        message.attachment_name = attachment.filename

    group.last_message = last_message_snapshot(message)
    group.updated_at = message.created_at
    session.add(message)
    session.add(group)
    session.commit()
    session.refresh(message)
    session.refresh(group)
    logger.info(f"Message {message.id} persisted in chat group {group.id}")

    rooms = [recipient_id, sender.id]
    await ws_manager.emit_to_rooms(rooms, EventType.RECEIVE_MESSAGE.value, message_payload(message))
    await ws_manager.emit_to_rooms(rooms, EventType.CHAT_GROUP_UPDATE.value, {
        "id": group.id,
        "participants": group.participants,
        "last_message": group.last_message,
        "updated_at": group.updated_at,
    })
    return message


def list_messages(session: Session, user: User, chat_group_id: Optional[str]) -> List[Message]:
    """Oldest first, capped by the fetch limit"""
    validate_id(chat_group_id, "chat group ID")
    group = get_group_for_participant(session, chat_group_id, user.id)
    return list(session.exec(
        select(Message)
        .where(Message.chat_group_id == group.id)
        .order_by(Message.created_at)
        .limit(get_business_rules().MESSAGE_FETCH_LIMIT)
    ).all())


def list_chat_groups(session: Session, user: User) -> List[Dict[str, Any]]:
    groups = session.exec(
        select(ChatGroup)
        .where(or_(ChatGroup.participant_a == user.id, ChatGroup.participant_b == user.id))
        .order_by(ChatGroup.updated_at.desc())
    ).all()

    result = []
    for group in groups:
        other_id = group.participant_b if group.participant_a == user.id else group.participant_a
        payload = chat_group_payload(group)
        payload["other_user"] = user_summary(session.get(User, other_id))
        result.append(payload)
    return result


def list_available_users(session: Session, user: User) -> List[Dict[str, Any]]:
    """Users of the opposite role, each with the pair's chat group if one exists"""
    other_role = UserRole.PATIENT if user.role == UserRole.DOCTOR else UserRole.DOCTOR
    users = session.exec(select(User).where(User.role == other_role).order_by(User.name)).all()

    result = []
    for other in users:
        group = find_chat_group(session, user.id, other.id)
        summary = user_summary(other)
        summary["chat_group_id"] = group.id if group else None
        summary["last_message"] = group.last_message if group else None
        result.append(summary)
    return result


async def relay_message(session: Session, user_id: str, data: Any) -> Message:
    """Relay an already-persisted message to both participants' rooms"""
    if not isinstance(data, dict):
        data = {}

    recipient_id = data.get("recipient_id")
    message_id = data.get("message_id")
    content = data.get("content")
    if not recipient_id or not message_id or not content:
        raise RelayError("Recipient ID, content, and message ID are required")

    sender_id = data.get("sender_id")
    if sender_id is not None and sender_id != user_id:
        raise RelayError("Unauthorized sender")

    if not is_valid_id(recipient_id):
        raise RelayError("Invalid recipient ID")

    if not session.get(User, recipient_id):
        raise RelayError("Recipient not found")

    message = session.get(Message, message_id) if is_valid_id(message_id) else None
    if not message:
        raise RelayError("Message not found")

    if message.sender_id != user_id or message.recipient_id != recipient_id:
        raise RelayError("Message data mismatch")

    await ws_manager.emit_to_rooms(
        [recipient_id, user_id],
        EventType.RECEIVE_MESSAGE.value,
        message_payload(message)
    )
    logger.info(f"Relayed message {message.id} from {user_id} to {recipient_id}")
    return message
