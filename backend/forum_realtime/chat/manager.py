"""WebSocket connection manager for the forum's real-time chat.

This module owns the transport side of the chat layer: every live socket,
the rooms each socket has joined, and fan-out of outbound events.

Key features:
    - One Connection per socket with an optional resolved user id
    - Arbitrary named rooms (the global room and per-pair private rooms)
    - Broadcast to a room, to a room minus one connection, to everyone,
      or to an explicit list of connection ids
    - Concurrent delivery with asyncio.gather()
    - Automatic dead connection cleanup

Wire format:
    Every outbound frame is ``{"event": <name>, "data": <payload>}``;
    acknowledgements are ``{"event": "ack", "ackId": <id>, "data": <result>}``.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

from .schemas import ChatEvent

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """A live transport socket.

    Attributes:
        id: Backend-generated connection id.
        websocket: The underlying socket (anything with ``send_json``).
        user_id: Identity resolved at handshake, None for anonymous sockets.
        rooms: Rooms this connection has joined.
    """
    id: str
    websocket: Any
    user_id: Optional[str] = None
    rooms: Set[str] = field(default_factory=set)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


def _frame(event: Any, data: Any) -> dict:
    name = event.value if isinstance(event, ChatEvent) else str(event)
    return {"event": name, "data": data}


class ConnectionManager:
    """Tracks connections and room membership and delivers events.

    Note:
        Room membership lives here rather than in the registry: a connection
        can be in a room without any user identity (e.g. an anonymous reader
        of the global room).
    """

    def __init__(self) -> None:
        """Initialize empty connection manager."""
        # connection_id -> Connection
        self.connections: Dict[str, Connection] = {}

        # room -> connection ids
        self.rooms: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> Connection:
        """Accept a WebSocket and start tracking it.

        Args:
            websocket: The socket to accept.
            user_id: Identity resolved by the authenticator (None if anonymous).

        Returns:
            The new Connection.
        """
        await websocket.accept()
        return self.add(websocket, user_id)

    def add(self, websocket: Any, user_id: Optional[str] = None) -> Connection:
        """Track an already accepted socket."""
        connection = Connection(id=str(uuid.uuid4()), websocket=websocket, user_id=user_id)
        self.connections[connection.id] = connection
        logger.info(
            f"[Manager] Connection {connection.id} opened "
            f"(user={user_id or 'anonymous'}, total={len(self.connections)})"
        )
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Forget a connection and remove it from all its rooms."""
        for room in list(connection.rooms):
            self.leave(connection, room)
        self.connections.pop(connection.id, None)
        logger.info(
            f"[Manager] Connection {connection.id} closed (total={len(self.connections)})"
        )

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    # =========================================================================
    # Rooms
    # =========================================================================

    def join(self, connection: Connection, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection.id)
        connection.rooms.add(room)

    def leave(self, connection: Connection, room: str) -> None:
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self.rooms[room]
        connection.rooms.discard(room)

    def is_in_room(self, connection_id: str, room: str) -> bool:
        return connection_id in self.rooms.get(room, ())

    def room_members(self, room: str) -> List[Connection]:
        return [
            self.connections[cid]
            for cid in self.rooms.get(room, ())
            if cid in self.connections
        ]

    def get_room_size(self, room: str) -> int:
        """Get the number of active connections in a room."""
        return len(self.rooms.get(room, ()))

    # =========================================================================
    # Delivery
    # =========================================================================

    async def emit(self, connection: Connection, event: Any, data: Any) -> bool:
        """Send one event to one connection."""
        ok = await self._safe_send(connection, _frame(event, data))
        if not ok:
            self._cleanup_connections([connection])
        return ok

    async def send_ack(self, connection: Connection, ack_id: Any, result: dict) -> bool:
        """Reply to an inbound frame that carried ``ackId``."""
        message = {"event": ChatEvent.ACK.value, "ackId": ack_id, "data": result}
        return await self._safe_send(connection, message)

    async def broadcast(
        self,
        room: str,
        event: Any,
        data: Any,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Send an event to every connection in a room concurrently.

        Args:
            room: Target room.
            event: Event name.
            data: JSON-serializable payload.
            exclude: Connection to skip (typing indicators skip the sender).

        Returns:
            Number of connections the event was delivered to.
        """
        targets = [
            conn for conn in self.room_members(room)
            if exclude is None or conn.id != exclude.id
        ]
        return await self._deliver(targets, _frame(event, data))

    async def broadcast_all(self, event: Any, data: Any) -> int:
        """Send an event to every open connection."""
        return await self._deliver(list(self.connections.values()), _frame(event, data))

    async def send_to(self, connection_ids: Iterable[str], event: Any, data: Any) -> int:
        """Send an event to specific connections, ignoring unknown ids."""
        targets = [
            self.connections[cid] for cid in connection_ids if cid in self.connections
        ]
        return await self._deliver(targets, _frame(event, data))

    async def _deliver(self, targets: List[Connection], message: dict) -> int:
        if not targets:
            return 0

        # Send to all connections concurrently
        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in targets],
            return_exceptions=True
        )

        # Remove failed connections
        failed_connections = [
            conn for conn, success in zip(targets, results)
            if success is not True
        ]
        self._cleanup_connections(failed_connections)
        return len(targets) - len(failed_connections)

    async def _safe_send(self, connection: Connection, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {connection.id}: {e}")
            return False

    def _cleanup_connections(self, failed_connections: List[Connection]) -> None:
        """Drop dead connections from every room they had joined.

        The connection record itself stays until the socket loop notices the
        disconnect, so presence bookkeeping still runs exactly once.
        """
        for conn in failed_connections:
            for room in list(conn.rooms):
                self.leave(conn, room)
                logger.debug(f"Removed dead connection {conn.id} from room {room}")

    def clear(self) -> None:
        """Drop all state (used by tests between cases)."""
        self.connections.clear()
        self.rooms.clear()
