"""Chat groups and messages between doctors and patients"""
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlmodel import Session
from typing import Optional, List
from database import get_session
from models import User
from schemas import ChatGroupCreate, ChatGroupResolveResponse
from dependencies import get_current_user
from services import chat_service

router = APIRouter(prefix="/api/messages", tags=["Chat"])


@router.get("/available-users")
async def get_available_users(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Users the caller can chat with, with the existing chat group if any"""
    return chat_service.list_available_users(session, current_user)


@router.post("/create-chat-group", response_model=ChatGroupResolveResponse)
async def create_chat_group(
    data: ChatGroupCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Find or create the chat group for the caller and a recipient"""
    group, created = await chat_service.resolve_chat_group(session, current_user, data.recipient_id)
    return ChatGroupResolveResponse(chat_group_id=group.id, created=created)


@router.get("/chat-groups")
async def get_chat_groups(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Caller's chat groups, most recent activity first"""
    return chat_service.list_chat_groups(session, current_user)


@router.get("")
async def get_messages(
    chat_group_id: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
) -> List[dict]:
    """Message history of one chat group, oldest first"""
    messages = chat_service.list_messages(session, current_user, chat_group_id)
    return [chat_service.message_payload(message) for message in messages]


@router.post("", status_code=status.HTTP_200_OK)
async def send_message(
    recipient_id: Optional[str] = Form(None),
    chat_group_id: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    attachment: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Send a text message and/or attachment to a chat group"""
    message = await chat_service.send_message(
        session,
        current_user,
        recipient_id=recipient_id,
        chat_group_id=chat_group_id,
        content=content,
        file=attachment,
    )
    return chat_service.message_payload(message)
