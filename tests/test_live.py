"""
Tests for live change notifications: watcher -> catalog -> WebSocket channels.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from workshop import catalog
from workshop.live import manager as live_manager
from workshop.live.manager import MessageType, WebSocketManager, WebSocketMessage, app_channel
from workshop.watcher import FileWatcher

SEP = "__sep__"
P1 = SEP.join(["exercises", "01.first", "01.problem.hello"])


def fake_websocket(fail: bool = False):
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_text = AsyncMock(side_effect=RuntimeError("closed") if fail else None)
    return websocket


def sent_messages(websocket):
    return [json.loads(call.args[0]) for call in websocket.send_text.await_args_list]


class TestWebSocketManager:
    """Channel subscriptions and broadcasts."""

    @pytest.mark.asyncio
    async def test_broadcast_reaches_only_subscribers(self):
        manager = WebSocketManager()
        subscriber, bystander = fake_websocket(), fake_websocket()
        await manager.connect(subscriber)
        await manager.connect(bystander)
        await manager.subscribe(subscriber, app_channel(P1))

        sent = await manager.broadcast_to_channel(
            app_channel(P1),
            WebSocketMessage(type=MessageType.FILE_CHANGED, channel=app_channel(P1), data={"path": "x"}),
        )

        assert sent == 1
        assert [m["type"] for m in sent_messages(subscriber)] == ["connected", "subscribed", "file_changed"]
        assert [m["type"] for m in sent_messages(bystander)] == ["connected"]

    @pytest.mark.asyncio
    async def test_failed_send_disconnects(self):
        manager = WebSocketManager()
        websocket = fake_websocket()
        await manager.connect(websocket)
        await manager.subscribe(websocket, "playground")
        websocket.send_text.side_effect = RuntimeError("closed")

        sent = await manager.broadcast_to_channel(
            "playground", WebSocketMessage(type=MessageType.PLAYGROUND_SET, channel="playground")
        )

        assert sent == 0
        assert manager.get_connection_count() == 0
        assert manager.get_channel_subscribers("playground") == 0

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        manager = WebSocketManager()
        websocket = fake_websocket()
        await manager.connect(websocket)
        await manager.handle_message(websocket, json.dumps({"type": "subscribe", "data": {"channel": "playground"}}))
        assert manager.get_channel_subscribers("playground") == 1

        await manager.handle_message(websocket, json.dumps({"type": "unsubscribe", "data": {"channel": "playground"}}))
        assert manager.get_channel_subscribers("playground") == 0

    @pytest.mark.asyncio
    async def test_subscribe_without_channel(self):
        manager = WebSocketManager()
        response = await manager.handle_message(fake_websocket(), json.dumps({"type": "subscribe"}))
        assert response.type == MessageType.ERROR

    @pytest.mark.asyncio
    async def test_unknown_message_type(self):
        manager = WebSocketManager()
        response = await manager.handle_message(fake_websocket(), json.dumps({"type": "launch"}))
        assert response.type == MessageType.ERROR


class TestNotifications:
    """Helpers used by the watcher and the playground route."""

    @pytest.mark.asyncio
    async def test_notify_file_changed(self):
        manager = WebSocketManager()
        websocket = fake_websocket()
        await manager.connect(websocket)
        await manager.subscribe(websocket, app_channel(P1))

        with patch.object(live_manager, "ws_manager", manager):
            assert await live_manager.notify_file_changed(P1, "modified", "/w/index.js") == 1

        message = sent_messages(websocket)[-1]
        assert message["channel"] == f"app:{P1}"
        assert message["data"] == {"app_name": P1, "event": "modified", "path": "/w/index.js"}

    @pytest.mark.asyncio
    async def test_notify_playground_set(self):
        manager = WebSocketManager()
        websocket = fake_websocket()
        await manager.connect(websocket)
        await manager.subscribe(websocket, "playground")

        with patch.object(live_manager, "ws_manager", manager):
            await live_manager.notify_playground_set(P1)

        message = sent_messages(websocket)[-1]
        assert message["type"] == "playground_set"
        assert message["data"] == {"app_name": P1}


class TestWatcherIntegration:
    """File changes reach the staleness tracker and the change callback."""

    @pytest.mark.asyncio
    async def test_change_inside_app(self, ctx, workshop_root):
        ctx.watcher = FileWatcher(workshop_root)
        on_app_change = AsyncMock()
        catalog.init(ctx, on_app_change=on_app_change)
        app_dir = workshop_root / "exercises" / "01.first" / "01.problem.hello"

        await ctx.watcher.dispatch("modified", str(app_dir / "index.js"))

        on_app_change.assert_awaited_once_with(P1, "modified", str(app_dir / "index.js"))
        assert ctx.tracker.last_touched(app_dir) is not None

    @pytest.mark.asyncio
    async def test_change_outside_apps_touches_root(self, ctx, workshop_root):
        ctx.watcher = FileWatcher(workshop_root)
        on_app_change = AsyncMock()
        catalog.init(ctx, on_app_change=on_app_change)

        await ctx.watcher.dispatch("added", str(workshop_root / "exercises" / "03.third"))

        on_app_change.assert_not_awaited()
        assert ctx.tracker.last_touched(workshop_root) is not None

    @pytest.mark.asyncio
    async def test_paused_subtree_ignored(self, ctx, workshop_root):
        ctx.watcher = FileWatcher(workshop_root)
        on_app_change = AsyncMock()
        catalog.init(ctx, on_app_change=on_app_change)
        app_dir = workshop_root / "exercises" / "01.first" / "01.problem.hello"

        ctx.watcher.unwatch(app_dir)
        await ctx.watcher.dispatch("modified", str(app_dir / "index.js"))

        on_app_change.assert_not_awaited()
        assert ctx.tracker.last_touched(app_dir) is None

    @pytest.mark.asyncio
    async def test_listener_errors_are_logged(self, ctx, workshop_root, caplog):
        ctx.watcher = FileWatcher(workshop_root)
        catalog.init(ctx, on_app_change=AsyncMock(side_effect=RuntimeError("socket gone")))
        app_dir = workshop_root / "exercises" / "01.first" / "01.problem.hello"

        await ctx.watcher.dispatch("modified", str(app_dir / "index.js"))

        assert "socket gone" in caplog.text
