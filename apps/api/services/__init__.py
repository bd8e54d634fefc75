"""
Services package for the clinic API
Contains the real-time hub, notification outbox and workflow services
"""

from .websocket_manager import ws_manager, EventType, WebSocketConnectionManager
from .notification_service import notification_dispatcher, NotificationDispatcher, queue_notification

__all__ = [
    'ws_manager',
    'EventType',
    'WebSocketConnectionManager',
    'notification_dispatcher',
    'NotificationDispatcher',
    'queue_notification',
]
