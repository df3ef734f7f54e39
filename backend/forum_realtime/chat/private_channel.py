"""Private chat between two users.

Each pair of users shares one room whose key is the sorted pair joined with
``_``; both clients compute the same key and join it while the thread is
open. A sent message is delivered twice over:

    1. ``chat:private:new`` to the room, i.e. to every connection currently
       viewing the thread (both participants, any number of tabs).
    2. ``chat:private:notify`` to each of the peer's registered connections
       that is NOT in the room, so an open app that is showing something
       else can still update its conversation list.

The sender never receives a notify for its own message.
"""
import logging
from typing import Sequence

from ..database import utcnow
from .guards import SenderGuard
from .manager import Connection, ConnectionManager
from .registry import ConnectionRegistry
from .schemas import ChatEvent, canonical_pair, private_room_key
from .store import ChatStore

logger = logging.getLogger(__name__)


class PrivateChannel:
    """Messages, typing indicators and read receipts between two users."""

    def __init__(
        self,
        connections: ConnectionManager,
        registry: ConnectionRegistry,
        store: ChatStore,
        guard: SenderGuard,
    ) -> None:
        self._connections = connections
        self._registry = registry
        self._store = store
        self._guard = guard

    def join(self, connection: Connection, room_key: str) -> None:
        # The key is computed by the client and trusted as-is.
        self._connections.join(connection, room_key)
        logger.info(f"[Private] {connection.id} joined room {room_key}")

    def leave(self, connection: Connection, room_key: str) -> None:
        self._connections.leave(connection, room_key)
        logger.info(f"[Private] {connection.id} left room {room_key}")

    async def send_message(
        self,
        connection: Connection,
        peer_id: str,
        text: str,
        attachments: Sequence[str],
    ) -> dict:
        """Store a message in the pair's conversation and deliver it.

        Returns:
            Ack payload with ``messageId`` and ``conversationId``.

        Raises:
            Unauthorized, Forbidden, PersistenceFailure.
        """
        sender_id, _ = await self._guard.require_active_user(connection, "send a private message")
        participants = canonical_pair(sender_id, peer_id)
        room_key = private_room_key(*participants)

        conversation = await self._store.find_or_create_conversation(participants)
        message = await self._store.append_message(conversation.id, sender_id, text, attachments)
        message_data = message.model_dump(mode="json")

        await self._connections.broadcast(
            room_key,
            ChatEvent.PRIVATE_NEW,
            {"fromUserId": sender_id, "toUserId": peer_id, "message": message_data},
        )

        notified = 0
        if peer_id != sender_id:
            sender_connections = self._registry.lookup(sender_id) | {connection.id}
            targets = [
                cid for cid in self._registry.lookup(peer_id)
                if cid not in sender_connections
                and not self._connections.is_in_room(cid, room_key)
            ]
            notified = await self._connections.send_to(
                targets,
                ChatEvent.PRIVATE_NOTIFY,
                {"fromUserId": sender_id, "message": message_data},
            )

        logger.info(
            f"[Private] Message {message.id} {sender_id} -> {peer_id} "
            f"(room={room_key}, notified={notified})"
        )
        return {"success": True, "messageId": message.id, "conversationId": conversation.id}

    async def typing(self, connection: Connection, peer_id: str, is_typing: bool) -> dict:
        """Broadcast a typing indicator to the pair's room, sender's tabs included."""
        sender_id, _ = await self._guard.require_active_user(connection, "type in private chat")
        await self._connections.broadcast(
            private_room_key(sender_id, peer_id),
            ChatEvent.PRIVATE_TYPING,
            {"fromUserId": sender_id, "isTyping": is_typing},
        )
        return {"success": True}

    async def mark_read(self, connection: Connection, peer_id: str) -> dict:
        """Record that the caller has read the conversation with ``peer_id``.

        A pair without a conversation is a no-op, not an error.
        """
        reader_id = self._guard.require_identity(connection, "mark messages read")
        participants = canonical_pair(reader_id, peer_id)

        conversation = await self._store.find_conversation(participants)
        if conversation is None:
            logger.debug(f"[Private] No conversation {reader_id}/{peer_id} to mark read")
            return {"success": True, "updated": False}

        mark = await self._store.set_read_mark(conversation.id, reader_id, utcnow())
        timestamp = mark.lastReadAt.isoformat()
        await self._connections.broadcast(
            conversation.roomKey,
            ChatEvent.PRIVATE_READ,
            {"fromUserId": reader_id, "timestamp": timestamp},
        )
        logger.info(f"[Private] {reader_id} read conversation with {peer_id}")
        return {"success": True, "updated": True, "lastReadAt": timestamp}
