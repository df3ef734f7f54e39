"""Connection registry: which live connections belong to which user.

The registry is injected into the presence tracker, the private channel and
the notification dispatcher instead of being a module-level dict, so a
shared store (e.g. a key-value cache) can replace the in-memory version
when the service runs in several processes.

A user may hold several connections at once (multiple tabs); each of them
is a delivery target for direct events.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Set

logger = logging.getLogger(__name__)


class ConnectionRegistry(ABC):
    """Mapping ``userId -> {connectionId}``."""

    @abstractmethod
    def register(self, user_id: str, connection_id: str) -> None:
        """Bind a connection to a user. Registering twice is a no-op."""

    @abstractmethod
    def lookup(self, user_id: str) -> Set[str]:
        """Return the user's connection ids (empty set when offline)."""

    @abstractmethod
    def unregister(self, user_id: str, connection_id: str) -> bool:
        """Remove one binding.

        Returns:
            True if the user has no connections left afterwards.
        """

    @abstractmethod
    def users_for(self, connection_id: str) -> Set[str]:
        """Users a connection is registered under (normally at most one)."""

    def is_online(self, user_id: str) -> bool:
        return bool(self.lookup(user_id))

    @abstractmethod
    def online_users(self) -> List[str]:
        """All users with at least one registered connection."""


class InMemoryConnectionRegistry(ConnectionRegistry):
    """Process-local registry for single-worker deployments.

    Not thread-safe; all access happens on the event loop.
    """

    def __init__(self) -> None:
        # user_id -> connection ids
        self._by_user: Dict[str, Set[str]] = {}
        # connection_id -> user ids, for disconnect handling
        self._by_connection: Dict[str, Set[str]] = {}

    def register(self, user_id: str, connection_id: str) -> None:
        self._by_user.setdefault(user_id, set()).add(connection_id)
        self._by_connection.setdefault(connection_id, set()).add(user_id)
        logger.debug("[Registry] %s -> %s", user_id, connection_id)

    def lookup(self, user_id: str) -> Set[str]:
        return set(self._by_user.get(user_id, ()))

    def unregister(self, user_id: str, connection_id: str) -> bool:
        connections = self._by_user.get(user_id)
        if connections is not None:
            connections.discard(connection_id)
            if not connections:
                del self._by_user[user_id]

        users = self._by_connection.get(connection_id)
        if users is not None:
            users.discard(user_id)
            if not users:
                del self._by_connection[connection_id]

        return user_id not in self._by_user

    def users_for(self, connection_id: str) -> Set[str]:
        return set(self._by_connection.get(connection_id, ()))

    def online_users(self) -> List[str]:
        return list(self._by_user.keys())

    def clear(self) -> None:
        self._by_user.clear()
        self._by_connection.clear()
