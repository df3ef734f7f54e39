"""Presence tracking: who is online, persisted and broadcast.

State per user cycles OFFLINE -> ONLINE -> OFFLINE indefinitely.

    OFFLINE -> ONLINE   authenticated connect, or a ``user:online`` event
    ONLINE  -> OFFLINE  the user's last registered connection closes

Every transition writes ``isOnline``, ``lastSeen`` and ``socketId`` first and
only then broadcasts ``user:status:changed`` to all connections, so anyone
reacting to the broadcast reads the new state back.
"""
import logging
from typing import Optional

from ..database import utcnow
from ..users import UserDirectory, UserPresence
from .errors import Forbidden
from .manager import Connection, ConnectionManager
from .registry import ConnectionRegistry
from .schemas import ChatEvent

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Keeps the registry, the users table and connected clients in sync."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        connections: ConnectionManager,
        users: UserDirectory,
    ) -> None:
        self._registry = registry
        self._connections = connections
        self._users = users

    async def connect(self, connection: Connection) -> Optional[UserPresence]:
        """Handle a new socket. Anonymous sockets do not change presence."""
        if connection.user_id is None:
            return None
        return await self._go_online(connection.user_id, connection)

    async def announce_online(self, connection: Connection, user_id: str) -> Optional[UserPresence]:
        """Handle ``user:online``: a client declares which user it belongs to.

        Supports clients that open the socket before their login completes.
        The declared id is registered for delivery but does not grant the
        connection an identity for privileged actions.
        An authenticated connection may only declare its own id.

        Raises:
            Forbidden: The connection is authenticated as a different user.
        """
        if connection.user_id is not None and connection.user_id != user_id:
            logger.warning(
                f"[Presence] {connection.id} authenticated as {connection.user_id} "
                f"tried to declare {user_id}"
            )
            raise Forbidden("identity-mismatch")
        return await self._go_online(user_id, connection)

    async def disconnect(self, connection: Connection) -> None:
        """Handle a closed socket for every user it was registered under."""
        for user_id in self._registry.users_for(connection.id):
            now_empty = self._registry.unregister(user_id, connection.id)
            if now_empty:
                await self._transition(user_id, is_online=False, socket_id=None)
                continue

            # Another tab is still open: the user stays online, but socketId
            # must point at a connection that still exists.
            remaining = sorted(self._registry.lookup(user_id))
            await self._users.set_presence(user_id, True, utcnow(), remaining[0])
            logger.info(
                f"[Presence] {user_id} closed {connection.id}, "
                f"{len(remaining)} connection(s) remain"
            )

    def is_online(self, user_id: str) -> bool:
        return self._registry.is_online(user_id)

    async def _go_online(self, user_id: str, connection: Connection) -> Optional[UserPresence]:
        newly_registered = connection.id not in self._registry.lookup(user_id)
        self._registry.register(user_id, connection.id)
        try:
            return await self._transition(user_id, is_online=True, socket_id=connection.id)
        except Exception:
            # Not persisted as online, so not a delivery target either.
            if newly_registered:
                self._registry.unregister(user_id, connection.id)
            raise

    async def _transition(
        self, user_id: str, is_online: bool, socket_id: Optional[str]
    ) -> Optional[UserPresence]:
        presence = await self._users.set_presence(user_id, is_online, utcnow(), socket_id)

        data = {"userId": user_id, "isOnline": is_online}
        if presence is not None and presence.lastSeen is not None:
            data["lastSeen"] = presence.lastSeen.isoformat()

        delivered = await self._connections.broadcast_all(ChatEvent.USER_STATUS_CHANGED, data)
        logger.info(
            f"[Presence] {user_id} is {'online' if is_online else 'offline'} "
            f"(notified {delivered} connection(s))"
        )
        return presence
