"""
Live updates for the workshop app.

Pushes file-change and playground events to connected browsers over
WebSocket.
"""

from .manager import (
    MessageType,
    WebSocketManager,
    WebSocketMessage,
    app_channel,
    notify_file_changed,
    notify_playground_set,
    ws_manager,
)

__all__ = [
    "WebSocketManager",
    "WebSocketMessage",
    "MessageType",
    "app_channel",
    "ws_manager",
    "notify_file_changed",
    "notify_playground_set",
]
