"""Global chat: one broadcast room every connected client may join."""
import logging
from typing import Sequence

from .guards import SenderGuard
from .manager import Connection, ConnectionManager
from .presenters import MessagePresenter
from .schemas import ChatEvent
from .store import ChatStore

logger = logging.getLogger(__name__)


class GlobalChannel:
    """Join/leave, message fan-out and typing for the global room.

    Messages are echoed to the sender as well; clients render their own
    message from the echo rather than optimistically. Typing indicators
    skip the sender.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        store: ChatStore,
        guard: SenderGuard,
        presenter: MessagePresenter,
        room: str = "global_chat",
    ) -> None:
        self._connections = connections
        self._store = store
        self._guard = guard
        self._presenter = presenter
        self.room = room

    def join(self, connection: Connection) -> None:
        self._connections.join(connection, self.room)
        logger.debug(f"[Global] {connection.id} joined")

    def leave(self, connection: Connection) -> None:
        self._connections.leave(connection, self.room)
        logger.debug(f"[Global] {connection.id} left")

    async def send_message(
        self, connection: Connection, text: str, attachments: Sequence[str]
    ) -> dict:
        """Persist and broadcast a global message.

        Returns:
            Ack payload ``{"success": True, "messageId": ...}``.

        Raises:
            Unauthorized, Forbidden, PersistenceFailure.
        """
        sender_id, _ = await self._guard.require_active_user(connection, "send a global message")

        message = await self._store.create_global_message(sender_id, text, attachments)
        payload = await self._presenter.present(message)

        delivered = await self._connections.broadcast(
            self.room, ChatEvent.GLOBAL_NEW, {"message": payload}
        )
        logger.info(
            f"[Global] Message {message.id} from {sender_id} delivered to {delivered} connection(s)"
            + (f" with {len(message.attachments)} attachment(s)" if message.attachments else "")
        )
        return {"success": True, "messageId": message.id}

    async def typing(self, connection: Connection, is_typing: bool) -> dict:
        """Tell everyone else in the room that the sender is (not) typing."""
        user_id, profile = await self._guard.require_active_user(connection, "type in global chat")

        await self._connections.broadcast(
            self.room,
            ChatEvent.GLOBAL_TYPING,
            {
                "userId": user_id,
                "username": profile.username if profile else None,
                "displayName": profile.displayName if profile else None,
                "isTyping": is_typing,
            },
            exclude=connection,
        )
        return {"success": True}
