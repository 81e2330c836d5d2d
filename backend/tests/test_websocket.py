"""Tests for WebSocket channels and event publishing."""

import asyncio

import pytest
from starlette.websockets import WebSocketDisconnect

from app.services import websocket_service
from app.services.websocket_service import ConnectionManager, build_message, department_channel, queue_event


class FakeSocket:
    def __init__(self, fail=False):
        self.accepted = False
        self.closed_with = None
        self.sent = []
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def close(self, code=1000):
        self.closed_with = code

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(message)


class TestConnectionManager:
    def test_broadcast_per_channel(self):
        manager = ConnectionManager()
        kitchen, orders = FakeSocket(), FakeSocket()

        async def scenario():
            await manager.connect(kitchen, "kitchen", user_id=1)
            await manager.connect(orders, "orders", user_id=2)
            await manager.broadcast({"type": "new_order"}, "kitchen")

        asyncio.run(scenario())
        assert kitchen.sent == [{"type": "new_order"}]
        assert orders.sent == []
        assert manager.get_connection_count() == 2

    def test_dead_socket_dropped(self):
        manager = ConnectionManager()
        dead = FakeSocket(fail=True)

        async def scenario():
            await manager.connect(dead, "orders")
            await manager.broadcast({"type": "ping"}, "orders")

        asyncio.run(scenario())
        assert manager.get_connection_count("orders") == 0

    def test_channel_capacity(self, monkeypatch):
        manager = ConnectionManager()
        monkeypatch.setattr(ConnectionManager, "MAX_CONNECTIONS_PER_CHANNEL", 1)
        first, second = FakeSocket(), FakeSocket()

        async def scenario():
            assert await manager.connect(first, "orders") is True
            assert await manager.connect(second, "orders") is False

        asyncio.run(scenario())
        assert second.closed_with == 1008


class TestEvents:
    def test_message_envelope(self):
        message = build_message("order_created", {"id": 1})
        assert message["type"] == "order_created"
        assert message["data"] == {"id": 1}
        assert "timestamp" in message

    @pytest.mark.parametrize("department,channel", [
        ("kitchen", "kitchen"),
        ("barista", "barista"),
        ("admin", None),
        (None, None),
    ])
    def test_department_channel(self, department, channel):
        assert department_channel(department) == channel

    def test_events_published_only_after_commit(self, db_session, monkeypatch):
        published = []
        monkeypatch.setattr(websocket_service, "publish", lambda event, data, channels: published.append(event))

        queue_event(db_session, "order_created", {"id": 1}, ["orders"])
        assert published == []
        db_session.commit()
        assert published == ["order_created"]

    def test_events_dropped_on_rollback(self, db_session, monkeypatch):
        published = []
        monkeypatch.setattr(websocket_service, "publish", lambda event, data, channels: published.append(event))

        queue_event(db_session, "order_created", {"id": 1}, ["orders"])
        db_session.rollback()
        db_session.commit()
        assert published == []

    def test_publish_without_loop_is_noop(self):
        websocket_service.publish("order_created", {"id": 1}, ["orders"])


class TestWebSocketEndpoints:
    def test_rejects_without_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/orders") as ws:
                ws.receive_json()

    def test_connect_and_ping(self, client, kitchen_user, auth_headers_for):
        token = auth_headers_for(kitchen_user)["Authorization"].split(" ", 1)[1]
        with client.websocket_connect(f"/ws/kitchen?token={token}") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert hello["data"] == {"channel": "kitchen", "user_id": kitchen_user.id}
            ws.send_text("ping")
            assert ws.receive_text() == "pong"
