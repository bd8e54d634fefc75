"""
WebSocket connection registry for real-time events.
Every authenticated connection joins the room named by its user id; events
addressed to a room reach all of that user's open sessions.
"""

import asyncio
from datetime import datetime
from typing import Dict, Set, Optional, List, Any, Iterable
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from dataclasses import dataclass, field
from enum import Enum
import logging

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event names on the wire"""
    # Inbound
    SEND_MESSAGE = "sendMessage"

    # Outbound
    AUTHENTICATED = "authenticated"
    RECEIVE_MESSAGE = "receiveMessage"
    CHAT_GROUP_UPDATE = "chatGroupUpdate"
    NEW_APPOINTMENT_REQUEST = "newAppointmentRequest"
    APPOINTMENT_REQUEST_SENT = "appointmentRequestSent"
    APPOINTMENT_UPDATE = "appointmentUpdate"
    PRESCRIPTION_ADDED = "prescriptionAdded"
    REVIEW_ADDED = "reviewAdded"
    NOTIFICATIONS_MARKED_AS_READ = "notificationsMarkedAsRead"
    ERROR = "error"


class DeliveryError(Exception):
    """Every open connection in a room failed to receive an event"""


@dataclass
class ConnectedUser:
    """Transient identity of one live connection"""
    user_id: str
    role: str
    websocket: WebSocket
    connected_at: datetime = field(default_factory=datetime.utcnow)


class WebSocketConnectionManager:
    """
    Explicit room registry keyed by user id.
    Handles:
    - Add-on-connect / remove-on-disconnect
    - Room-addressed emits (best effort: an empty room is a no-op)
    - Dropping connections whose send fails
    """

    def __init__(self):
        # Room members: room (user id) -> open connections
        self.rooms: Dict[str, Set[WebSocket]] = {}

        # Connection identities: websocket -> ConnectedUser
        self.connections: Dict[WebSocket, ConnectedUser] = {}

        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str, role: str) -> ConnectedUser:
        """Register an accepted connection in its user's room"""
        async with self._lock:
            user = ConnectedUser(user_id=user_id, role=role, websocket=websocket)
            self.connections[websocket] = user
            self.rooms.setdefault(user_id, set()).add(websocket)

        logger.info(f"User {user_id} ({role}) joined room {user_id}; {self.connection_count(user_id)} open session(s)")
        return user

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a connection from the registry"""
        async with self._lock:
            user = self.connections.pop(websocket, None)
            if user is None:
                return

            members = self.rooms.get(user.user_id)
            if members is not None:
                members.discard(websocket)
                # Clean up empty rooms
                if not members:
                    del self.rooms[user.user_id]

        logger.info(f"User {user.user_id} disconnected")

    async def send_personal(self, websocket: WebSocket, event: str, data: Any) -> bool:
        """Send an event to one connection"""
        frame = {"event": event, "data": jsonable_encoder(data)}
        try:
            await websocket.send_json(frame)
            return True
        except Exception as e:
            logger.error(f"Error sending {event} to connection: {e}")
            await self.disconnect(websocket)
            return False

    async def emit(self, room: str, event: str, data: Any, require_delivery: bool = False) -> int:
        """
        Emit an event to every connection in a room; returns the number reached.
        With require_delivery, raises DeliveryError when the room had members
        but none of them received the frame.
        """
        members = list(self.rooms.get(str(room), ()))
        if not members:
            logger.debug(f"Room {room} is empty; {event} not delivered live")
            return 0

        frame = {"event": event, "data": jsonable_encoder(data)}
        delivered = 0
        stale: List[WebSocket] = []
        last_error: Optional[Exception] = None

        for websocket in members:
            try:
                await websocket.send_json(frame)
                delivered += 1
            except Exception as e:
                logger.error(f"Error emitting {event} to room {room}: {e}")
                stale.append(websocket)
                last_error = e

        # Clean up broken connections
        for websocket in stale:
            await self.disconnect(websocket)

        if require_delivery and stale and not delivered:
            raise DeliveryError(f"{event} could not be delivered to room {room}: {last_error}")

        return delivered

    async def emit_to_rooms(self, rooms: Iterable[str], event: str, data: Any) -> int:
        """Emit the same event to several rooms, each room once"""
        delivered = 0
        seen = set()
        for room in rooms:
            room = str(room)
            if room in seen:
                continue
            seen.add(room)
            delivered += await self.emit(room, event, data)
        return delivered

    async def send_error(self, websocket: WebSocket, message: str) -> None:
        await self.send_personal(websocket, EventType.ERROR.value, {"message": message})

    def is_user_online(self, user_id: str) -> bool:
        return bool(self.rooms.get(user_id))

    def connection_count(self, user_id: str) -> int:
        return len(self.rooms.get(user_id, ()))

    def get_identity(self, websocket: WebSocket) -> Optional[ConnectedUser]:
        return self.connections.get(websocket)


# Global WebSocket manager instance
ws_manager = WebSocketConnectionManager()
