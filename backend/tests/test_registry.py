"""Tests for the connection registry and the connection manager."""
import pytest

from conftest import FakeWebSocket

from forum_realtime.chat.manager import ConnectionManager
from forum_realtime.chat.registry import InMemoryConnectionRegistry


# ---------------------------------------------------------------------------
# InMemoryConnectionRegistry
# ---------------------------------------------------------------------------


class TestInMemoryConnectionRegistry:
    def test_lookup_unknown_user_is_empty(self):
        registry = InMemoryConnectionRegistry()
        assert registry.lookup("nobody") == set()
        assert not registry.is_online("nobody")

    def test_register_multiple_tabs(self):
        registry = InMemoryConnectionRegistry()
        registry.register("alice", "c1")
        registry.register("alice", "c2")
        assert registry.lookup("alice") == {"c1", "c2"}
        assert registry.is_online("alice")

    def test_register_is_idempotent(self):
        registry = InMemoryConnectionRegistry()
        registry.register("alice", "c1")
        registry.register("alice", "c1")
        assert registry.lookup("alice") == {"c1"}

    def test_unregister_reports_last_connection(self):
        registry = InMemoryConnectionRegistry()
        registry.register("alice", "c1")
        registry.register("alice", "c2")

        assert registry.unregister("alice", "c1") is False
        assert registry.lookup("alice") == {"c2"}
        assert registry.unregister("alice", "c2") is True
        assert not registry.is_online("alice")

    def test_unregister_unknown_pair_is_harmless(self):
        registry = InMemoryConnectionRegistry()
        assert registry.unregister("ghost", "c9") is True

    def test_users_for_connection(self):
        """A connection can carry more than one declared user."""
        registry = InMemoryConnectionRegistry()
        registry.register("alice", "c1")
        registry.register("bob", "c1")
        assert registry.users_for("c1") == {"alice", "bob"}

        registry.unregister("alice", "c1")
        assert registry.users_for("c1") == {"bob"}

    def test_lookup_returns_a_copy(self):
        registry = InMemoryConnectionRegistry()
        registry.register("alice", "c1")
        registry.lookup("alice").add("c2")
        assert registry.lookup("alice") == {"c1"}

    def test_online_users_and_clear(self):
        registry = InMemoryConnectionRegistry()
        registry.register("alice", "c1")
        registry.register("bob", "c2")
        assert sorted(registry.online_users()) == ["alice", "bob"]

        registry.clear()
        assert registry.online_users() == []
        assert registry.users_for("c1") == set()


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------


class TestConnectionManagerRooms:
    def test_join_and_leave(self):
        manager = ConnectionManager()
        conn = manager.add(FakeWebSocket(), "alice")

        manager.join(conn, "global_chat")
        assert manager.is_in_room(conn.id, "global_chat")
        assert manager.get_room_size("global_chat") == 1
        assert conn.rooms == {"global_chat"}

        manager.leave(conn, "global_chat")
        assert not manager.is_in_room(conn.id, "global_chat")
        assert "global_chat" not in manager.rooms

    def test_leave_room_not_joined(self):
        manager = ConnectionManager()
        conn = manager.add(FakeWebSocket())
        manager.leave(conn, "nowhere")
        assert manager.rooms == {}

    def test_disconnect_leaves_all_rooms(self):
        manager = ConnectionManager()
        conn = manager.add(FakeWebSocket(), "alice")
        manager.join(conn, "a")
        manager.join(conn, "b")

        manager.disconnect(conn)
        assert manager.get(conn.id) is None
        assert manager.rooms == {}

    def test_anonymous_connection(self):
        manager = ConnectionManager()
        conn = manager.add(FakeWebSocket())
        assert conn.user_id is None
        assert not conn.authenticated


class TestConnectionManagerDelivery:
    @pytest.mark.asyncio
    async def test_broadcast_to_room(self):
        manager = ConnectionManager()
        ws1, ws2, ws3 = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        c1 = manager.add(ws1, "alice")
        c2 = manager.add(ws2, "bob")
        manager.add(ws3, "eve")
        manager.join(c1, "room")
        manager.join(c2, "room")

        delivered = await manager.broadcast("room", "custom:event", {"x": 1})
        assert delivered == 2
        assert ws1.sent == [{"event": "custom:event", "data": {"x": 1}}]
        assert ws2.sent == [{"event": "custom:event", "data": {"x": 1}}]
        assert ws3.sent == []

    @pytest.mark.asyncio
    async def test_broadcast_excludes_connection(self):
        manager = ConnectionManager()
        ws1, ws2 = FakeWebSocket(), FakeWebSocket()
        c1 = manager.add(ws1, "alice")
        c2 = manager.add(ws2, "bob")
        manager.join(c1, "room")
        manager.join(c2, "room")

        delivered = await manager.broadcast("room", "typing", {}, exclude=c1)
        assert delivered == 1
        assert ws1.sent == []
        assert len(ws2.sent) == 1

    @pytest.mark.asyncio
    async def test_broadcast_all_reaches_rooms_and_lobby(self):
        manager = ConnectionManager()
        ws1, ws2 = FakeWebSocket(), FakeWebSocket()
        c1 = manager.add(ws1, "alice")
        manager.add(ws2)
        manager.join(c1, "room")

        assert await manager.broadcast_all("user:status:changed", {"userId": "alice"}) == 2

    @pytest.mark.asyncio
    async def test_send_to_ignores_unknown_ids(self):
        manager = ConnectionManager()
        ws = FakeWebSocket()
        conn = manager.add(ws, "alice")

        delivered = await manager.send_to([conn.id, "missing"], "ping", None)
        assert delivered == 1
        assert ws.sent == [{"event": "ping", "data": None}]

    @pytest.mark.asyncio
    async def test_dead_connection_removed_from_rooms(self):
        manager = ConnectionManager()
        good, bad = FakeWebSocket(), FakeWebSocket(fail=True)
        c1 = manager.add(good, "alice")
        c2 = manager.add(bad, "bob")
        manager.join(c1, "room")
        manager.join(c2, "room")

        delivered = await manager.broadcast("room", "x", {})
        assert delivered == 1
        assert not manager.is_in_room(c2.id, "room")
        # The record stays until the socket loop reports the disconnect.
        assert manager.get(c2.id) is c2

    @pytest.mark.asyncio
    async def test_send_ack_frame(self):
        manager = ConnectionManager()
        ws = FakeWebSocket()
        conn = manager.add(ws)

        await manager.send_ack(conn, 7, {"success": True})
        assert ws.sent == [{"event": "ack", "ackId": 7, "data": {"success": True}}]
