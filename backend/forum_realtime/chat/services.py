"""Construction of the chat layer's components.

Every collaborator is passed in through constructors here, once, at
startup. ``ChatServices`` is stored on ``app.state.chat`` and read by the
routers.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..auth import ConnectionAuthenticator
from ..config import AppSettings
from ..database import Database
from ..notifications import NotificationDispatcher
from ..users import DuckDBAttachmentCatalog, DuckDBUserDirectory
from .events import EventDispatcher
from .global_channel import GlobalChannel
from .guards import SenderGuard
from .handlers import register_chat_handlers
from .manager import ConnectionManager
from .presence import PresenceTracker
from .presenters import MessagePresenter
from .private_channel import PrivateChannel
from .registry import ConnectionRegistry, InMemoryConnectionRegistry
from .store import DuckDBChatStore

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    """All chat components of one process."""
    config: AppSettings
    database: Database
    registry: ConnectionRegistry
    connections: ConnectionManager
    users: DuckDBUserDirectory
    attachments: DuckDBAttachmentCatalog
    store: DuckDBChatStore
    authenticator: ConnectionAuthenticator
    presenter: MessagePresenter
    presence: PresenceTracker
    global_channel: GlobalChannel
    private_channel: PrivateChannel
    notifications: NotificationDispatcher
    dispatcher: EventDispatcher

    @classmethod
    def build(
        cls,
        config: AppSettings,
        database: Database,
        registry: Optional[ConnectionRegistry] = None,
    ) -> "ChatServices":
        """Wire the components.

        Args:
            config: Loaded settings.
            database: Open database.
            registry: Registry implementation; in-memory when omitted.
        """
        registry = registry or InMemoryConnectionRegistry()
        connections = ConnectionManager()
        users = DuckDBUserDirectory(database)
        attachments = DuckDBAttachmentCatalog(database)
        store = DuckDBChatStore(database)
        guard = SenderGuard(users, config.chat.banned_message)
        presenter = MessagePresenter(users, attachments)

        presence = PresenceTracker(registry, connections, users)
        global_channel = GlobalChannel(
            connections, store, guard, presenter, room=config.chat.global_room
        )
        private_channel = PrivateChannel(connections, registry, store, guard)

        dispatcher = EventDispatcher(connections)
        register_chat_handlers(dispatcher, presence, global_channel, private_channel)

        jwt_secrets = config.secrets.jwt
        services = cls(
            config=config,
            database=database,
            registry=registry,
            connections=connections,
            users=users,
            attachments=attachments,
            store=store,
            authenticator=ConnectionAuthenticator(jwt_secrets.secret_key, jwt_secrets.algorithm),
            presenter=presenter,
            presence=presence,
            global_channel=global_channel,
            private_channel=private_channel,
            notifications=NotificationDispatcher(registry, connections),
            dispatcher=dispatcher,
        )
        logger.info("[Chat] Services ready (events=%s)", ", ".join(dispatcher.events))
        return services
