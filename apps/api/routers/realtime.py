"""WebSocket endpoint for per-user rooms: chat relay and live notifications"""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from typing import Optional
import json
import logging

import database
from auth import decode_token
from models import UserRole
from services.chat_service import relay_message, RelayError
from services.websocket_manager import ws_manager, EventType

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])

CONNECTABLE_ROLES = (UserRole.DOCTOR.value, UserRole.PATIENT.value)


def extract_token(websocket: WebSocket) -> Optional[str]:
    """Credential from the `token` query parameter or an Authorization bearer header"""
    token = websocket.query_params.get("token")
    if token:
        return token

    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def handle_send_message(websocket: WebSocket, user_id: str, data) -> None:
    with database.open_session() as session:
        try:
            await relay_message(session, user_id, data)
        except RelayError as e:
            logger.warning(f"sendMessage from {user_id} rejected: {e}")
            await ws_manager.send_error(websocket, str(e))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Authenticate at handshake, join the user's room, then serve inbound events"""
    token = extract_token(websocket)
    payload = decode_token(token) if token else None
    if not payload or payload.get("type") != "access":
        logger.warning("WebSocket connection rejected: authentication failed")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")
        return

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in CONNECTABLE_ROLES:
        logger.warning("WebSocket connection rejected: invalid user data in token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid user data")
        return

    await websocket.accept()
    await ws_manager.connect(websocket, user_id, role)
    await ws_manager.send_personal(websocket, EventType.AUTHENTICATED.value, {"user_id": user_id})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await ws_manager.send_error(websocket, "Invalid message format")
                continue

            if not isinstance(frame, dict):
                await ws_manager.send_error(websocket, "Invalid message format")
                continue

            event = frame.get("event")
            if event == EventType.SEND_MESSAGE.value:
                await handle_send_message(websocket, user_id, frame.get("data"))
            else:
                await ws_manager.send_error(websocket, f"Unknown event: {event}")

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception(f"WebSocket error for user {user_id}")
    finally:
        await ws_manager.disconnect(websocket)
