"""Push notifications to a user's live connections.

The forum's CRUD layer calls ``notify`` after it stores a notification
(new comment, like, mention, ...). Delivery is best effort: a user with no
open connection simply sees the notification on their next page load.
"""
import logging
from typing import Any, Dict

from ..chat.manager import ConnectionManager
from ..chat.registry import ConnectionRegistry
from ..chat.schemas import ChatEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Sends ``notification:new`` to every connection registered for a user."""

    def __init__(self, registry: ConnectionRegistry, connections: ConnectionManager) -> None:
        self._registry = registry
        self._connections = connections

    async def notify(self, user_id: str, notification: Dict[str, Any]) -> int:
        """Deliver a notification.

        Returns:
            Number of connections that received it.
        """
        targets = self._registry.lookup(user_id)
        delivered = await self._connections.send_to(
            targets,
            ChatEvent.NOTIFICATION_NEW,
            {"userId": user_id, "notification": notification},
        )
        logger.info(f"[Notifications] {user_id}: delivered to {delivered} connection(s)")
        return delivered
