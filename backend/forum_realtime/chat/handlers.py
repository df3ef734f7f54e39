"""Socket event handlers: payload validation in front of the chat components."""
from typing import Any

from .errors import InvalidPayload
from .events import EventDispatcher
from .global_channel import GlobalChannel
from .manager import Connection
from .presence import PresenceTracker
from .private_channel import PrivateChannel
from .schemas import (
    ChatEvent,
    GlobalMessagePayload,
    GlobalTypingPayload,
    PrivateMessagePayload,
    PrivateReadPayload,
    PrivateTypingPayload,
    UserOnlinePayload,
)


def _as_dict(data: Any) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidPayload()
    return data


def _room_key(data: Any) -> str:
    """Private join/leave accept a bare room key or ``{"roomId": ...}``."""
    if isinstance(data, dict):
        data = data.get("roomId")
    if not isinstance(data, str) or not data:
        raise InvalidPayload()
    return data


def register_chat_handlers(
    dispatcher: EventDispatcher,
    presence: PresenceTracker,
    global_channel: GlobalChannel,
    private_channel: PrivateChannel,
) -> None:
    """Wire every inbound chat event to its component."""

    async def user_online(connection: Connection, data: Any) -> dict:
        payload = UserOnlinePayload.model_validate(_as_dict(data))
        await presence.announce_online(connection, payload.userId)
        return {"success": True}

    async def global_join(connection: Connection, data: Any) -> dict:
        global_channel.join(connection)
        return {"success": True}

    async def global_leave(connection: Connection, data: Any) -> dict:
        global_channel.leave(connection)
        return {"success": True}

    async def global_message(connection: Connection, data: Any) -> dict:
        payload = GlobalMessagePayload.model_validate(_as_dict(data))
        return await global_channel.send_message(
            connection, payload.message.text, payload.message.attachments
        )

    async def global_typing(connection: Connection, data: Any) -> dict:
        payload = GlobalTypingPayload.model_validate(_as_dict(data))
        return await global_channel.typing(connection, payload.isTyping)

    async def private_join(connection: Connection, data: Any) -> dict:
        private_channel.join(connection, _room_key(data))
        return {"success": True}

    async def private_leave(connection: Connection, data: Any) -> dict:
        private_channel.leave(connection, _room_key(data))
        return {"success": True}

    async def private_message(connection: Connection, data: Any) -> dict:
        payload = PrivateMessagePayload.model_validate(_as_dict(data))
        return await private_channel.send_message(
            connection, payload.peerId, payload.message.text, payload.message.attachments
        )

    async def private_typing(connection: Connection, data: Any) -> dict:
        payload = PrivateTypingPayload.model_validate(_as_dict(data))
        return await private_channel.typing(connection, payload.peerId, payload.isTyping)

    async def private_read(connection: Connection, data: Any) -> dict:
        payload = PrivateReadPayload.model_validate(_as_dict(data))
        return await private_channel.mark_read(connection, payload.peerId)

    dispatcher.on(ChatEvent.USER_ONLINE, user_online)
    dispatcher.on(ChatEvent.GLOBAL_JOIN, global_join)
    dispatcher.on(ChatEvent.GLOBAL_LEAVE, global_leave)
    dispatcher.on(ChatEvent.GLOBAL_MESSAGE, global_message)
    dispatcher.on(ChatEvent.GLOBAL_TYPING, global_typing)
    dispatcher.on(ChatEvent.PRIVATE_JOIN, private_join)
    dispatcher.on(ChatEvent.PRIVATE_LEAVE, private_leave)
    dispatcher.on(ChatEvent.PRIVATE_MESSAGE, private_message)
    dispatcher.on(ChatEvent.PRIVATE_TYPING, private_typing)
    dispatcher.on(ChatEvent.PRIVATE_READ, private_read)
