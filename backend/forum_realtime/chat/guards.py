"""Identity and ban checks shared by the chat channels."""
import logging
from typing import Optional, Tuple

from ..database import utcnow
from ..users import UserDirectory, UserProfile
from .errors import Forbidden, Unauthorized
from .manager import Connection

logger = logging.getLogger(__name__)


class SenderGuard:
    """Rejects privileged actions from anonymous or banned connections."""

    def __init__(self, users: UserDirectory, banned_message: str) -> None:
        self._users = users
        self._banned_message = banned_message

    def require_identity(self, connection: Connection, action: str) -> str:
        """Return the connection's user id or raise Unauthorized."""
        if connection.user_id is None:
            logger.warning(
                f"[Guard] Unauthenticated connection {connection.id} tried to {action}"
            )
            raise Unauthorized()
        return connection.user_id

    async def require_active_user(
        self, connection: Connection, action: str
    ) -> Tuple[str, Optional[UserProfile]]:
        """Identity check plus ban check.

        Unknown users (no profile row) are let through; the profile is then None.

        Raises:
            Unauthorized: Anonymous connection.
            Forbidden: The user is currently banned.
        """
        user_id = self.require_identity(connection, action)
        profile = await self._users.get_user(user_id)
        if profile is not None and profile.is_banned_at(utcnow()):
            logger.warning(f"[Guard] Banned user {user_id} tried to {action}")
            raise Forbidden(self._banned_message)
        return user_id, profile
