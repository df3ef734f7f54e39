"""Turn stored messages into client payloads with sender and attachment details."""
from typing import Dict, List, Optional, Union

from ..users import AttachmentCatalog, SenderInfo, UserDirectory
from .schemas import GlobalMessage, PrivateMessage


class MessagePresenter:
    """Populates sender display fields and attachment metadata.

    Used for the live ``chat:global:new`` payload and for the history
    endpoints, so both render a message the same way.
    """

    def __init__(self, users: UserDirectory, attachments: AttachmentCatalog) -> None:
        self._users = users
        self._attachments = attachments

    async def present(
        self,
        message: Union[GlobalMessage, PrivateMessage],
        sender: Optional[SenderInfo] = None,
    ) -> dict:
        if sender is None:
            sender = await self._users.sender_info(message.senderId)
        attachments = await self._attachments.resolve(message.attachments)
        payload = message.model_dump(mode="json")
        payload["sender"] = sender.model_dump(mode="json")
        payload["attachments"] = [a.model_dump(mode="json") for a in attachments]
        return payload

    async def present_many(
        self, messages: List[Union[GlobalMessage, PrivateMessage]]
    ) -> List[dict]:
        senders: Dict[str, SenderInfo] = {}
        result = []
        for message in messages:
            if message.senderId not in senders:
                senders[message.senderId] = await self._users.sender_info(message.senderId)
            result.append(await self.present(message, senders[message.senderId]))
        return result
