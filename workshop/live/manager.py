"""
WebSocket channels for live workshop updates.

Browsers subscribe to:
- ``app:<name>``: files changed inside that app
- ``playground``: the playground was synced from another app

by sending ``{"type": "subscribe", "data": {"channel": "..."}}``.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket

from ..shared.logger import get_logger

logger = get_logger(__name__)

PLAYGROUND_CHANNEL = "playground"
SYSTEM_CHANNEL = "system"


class MessageType(str, Enum):
    FILE_CHANGED = "file_changed"
    PLAYGROUND_SET = "playground_set"

    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    PING = "ping"

    PONG = "pong"
    ERROR = "error"
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"


@dataclass
class WebSocketMessage:
    type: MessageType
    channel: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now().isoformat()

    def to_json(self) -> str:
        return json.dumps({
            "type": self.type.value,
            "channel": self.channel,
            "data": self.data,
            "timestamp": self.timestamp,
        })

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        data = json.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("Message must be a JSON object")
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise ValueError("Message data must be a JSON object")
        return cls(
            type=MessageType(data.get("type", "error")),
            channel=data.get("channel", ""),
            data=payload,
            timestamp=data.get("timestamp"),
        )


def app_channel(app_name: str) -> str:
    return f"app:{app_name}"


def _system_message(message_type: MessageType, **data) -> WebSocketMessage:
    return WebSocketMessage(type=message_type, channel=SYSTEM_CHANNEL, data=data)


class WebSocketManager:
    """Tracks connected browsers and the channels each one listens to."""

    def __init__(self):
        # connection -> subscribed channels
        self._subscriptions: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        await websocket.accept()
        async with self._lock:
            self._subscriptions[websocket] = set()
        await self.send_to_connection(websocket, _system_message(MessageType.CONNECTED, client_id=client_id))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._subscriptions.pop(websocket, None)

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            self._subscriptions.setdefault(websocket, set()).add(channel)
        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.SUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            self._subscriptions.get(websocket, set()).discard(channel)
        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.UNSUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    async def send_to_connection(self, websocket: WebSocket, message: WebSocketMessage) -> bool:
        """Send one message; a failing connection is dropped."""
        sent = await self._send_all([websocket], message)
        return sent == 1

    async def _send_all(self, targets: Iterable[WebSocket], message: WebSocketMessage) -> int:
        text = message.to_json()
        sent_count = 0
        for websocket in targets:
            try:
                await websocket.send_text(text)
                sent_count += 1
            except Exception as e:
                logger.debug("Dropping WebSocket connection after failed send: %s", e)
                await self.disconnect(websocket)
        return sent_count

    async def broadcast_to_channel(self, channel: str, message: WebSocketMessage) -> int:
        """Returns the number of connections that received the message."""
        async with self._lock:
            subscribers = [ws for ws, channels in self._subscriptions.items() if channel in channels]
        return await self._send_all(subscribers, message)

    def get_channel_subscribers(self, channel: str) -> int:
        return sum(1 for channels in self._subscriptions.values() if channel in channels)

    def get_connection_count(self) -> int:
        return len(self._subscriptions)

    async def handle_message(self, websocket: WebSocket, message_text: str) -> Optional[WebSocketMessage]:
        """Apply a client request; returns the reply to send, if any."""
        try:
            message = WebSocketMessage.from_json(message_text)
        except ValueError as e:
            return _system_message(MessageType.ERROR, error=f"Invalid message format: {e}")

        if message.type == MessageType.PING:
            return _system_message(MessageType.PONG, timestamp=datetime.now().isoformat())

        if message.type in (MessageType.SUBSCRIBE, MessageType.UNSUBSCRIBE):
            channel = message.data.get("channel")
            if not channel:
                return _system_message(MessageType.ERROR, error=f"{message.type.value} requires a channel")
            if message.type == MessageType.SUBSCRIBE:
                await self.subscribe(websocket, channel)
            else:
                await self.unsubscribe(websocket, channel)
        return None


ws_manager = WebSocketManager()


# ============= Workshop events =============


async def notify_file_changed(app_name: str, event: str, file_path: str) -> int:
    """Tell subscribers of an app that one of its files changed."""
    channel = app_channel(app_name)
    message = WebSocketMessage(
        type=MessageType.FILE_CHANGED,
        channel=channel,
        data={"app_name": app_name, "event": event, "path": file_path},
    )
    return await ws_manager.broadcast_to_channel(channel, message)


async def notify_playground_set(app_name: str) -> int:
    """Tell subscribers that the playground now mirrors ``app_name``."""
    message = WebSocketMessage(
        type=MessageType.PLAYGROUND_SET,
        channel=PLAYGROUND_CHANNEL,
        data={"app_name": app_name},
    )
    return await ws_manager.broadcast_to_channel(PLAYGROUND_CHANNEL, message)
