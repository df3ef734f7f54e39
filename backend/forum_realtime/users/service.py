"""User directory and attachment catalog backed by DuckDB.

The chat layer depends on the abstract interfaces; the DuckDB
implementations read the tables the forum's CRUD layer writes to.

Usage:
    users = DuckDBUserDirectory(database)
    profile = await users.get_user("u1")
    await users.set_presence("u1", True, utcnow(), "conn-1")
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from ..database import Database, storage_errors, utcnow
from .schemas import AttachmentInfo, SenderInfo, UserPresence, UserProfile

logger = logging.getLogger(__name__)


class UserDirectory(ABC):
    """Read access to user profiles plus the presence columns."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        """Return the profile, or None for an unknown user."""

    @abstractmethod
    async def set_presence(
        self,
        user_id: str,
        is_online: bool,
        seen_at: datetime,
        socket_id: Optional[str],
    ) -> Optional[UserPresence]:
        """Persist presence columns. ``lastSeen`` must never move backwards.

        Returns:
            The stored presence, or None if the user does not exist.
        """

    @abstractmethod
    async def get_presence(self, user_id: str) -> Optional[UserPresence]:
        """Return the persisted presence of a user."""

    @abstractmethod
    async def count_online(self) -> int:
        """Number of users currently flagged online."""

    async def sender_info(self, user_id: str) -> SenderInfo:
        """Display fields for a message sender, with placeholders if unknown."""
        profile = await self.get_user(user_id)
        if profile is None:
            return SenderInfo(id=user_id)
        return SenderInfo(
            id=profile.id,
            username=profile.username,
            displayName=profile.displayName or profile.username,
            avatarUrl=profile.avatarUrl,
        )


class AttachmentCatalog(ABC):
    """Resolves attachment ids into metadata."""

    @abstractmethod
    async def resolve(self, attachment_ids: Iterable[str]) -> List[AttachmentInfo]:
        """Return metadata for the known ids, in the order given."""


class DuckDBUserDirectory(UserDirectory):
    """UserDirectory over the ``users`` table."""

    _COLUMNS = (
        "id, username, display_name, avatar_url, is_banned, banned_until"
    )

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        with storage_errors("get_user"):
            row = self._db.connection.execute(
                f"SELECT {self._COLUMNS} FROM users WHERE id = ?", [user_id]
            ).fetchone()
        if row is None:
            return None
        return UserProfile(
            id=row[0],
            username=row[1],
            displayName=row[2],
            avatarUrl=row[3],
            isBanned=bool(row[4]),
            bannedUntil=row[5],
        )

    async def upsert_user(
        self,
        user_id: str,
        username: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        is_banned: bool = False,
        banned_until: Optional[datetime] = None,
    ) -> UserProfile:
        """Create or update a profile. Presence columns are left untouched.

        The forum's account endpoints own this table; this entry point lets
        them (and tests) keep it in sync.
        """
        with storage_errors("upsert_user"):
            self._db.connection.execute(
                """
                INSERT INTO users (id, username, display_name, avatar_url, is_banned, banned_until)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    username = excluded.username,
                    display_name = excluded.display_name,
                    avatar_url = excluded.avatar_url,
                    is_banned = excluded.is_banned,
                    banned_until = excluded.banned_until
                """,
                [user_id, username, display_name, avatar_url, is_banned, banned_until],
            )
        return UserProfile(
            id=user_id,
            username=username,
            displayName=display_name,
            avatarUrl=avatar_url,
            isBanned=is_banned,
            bannedUntil=banned_until,
        )

    async def set_presence(
        self,
        user_id: str,
        is_online: bool,
        seen_at: datetime,
        socket_id: Optional[str],
    ) -> Optional[UserPresence]:
        with storage_errors("set_presence"):
            row = self._db.connection.execute(
                """
                UPDATE users SET
                    is_online = ?,
                    last_seen = greatest(coalesce(last_seen, ?), ?),
                    socket_id = ?
                WHERE id = ?
                RETURNING id, is_online, last_seen, socket_id
                """,
                [is_online, seen_at, seen_at, socket_id, user_id],
            ).fetchone()
        if row is None:
            logger.debug("[Users] Presence update for unknown user %s ignored", user_id)
            return None
        return UserPresence(userId=row[0], isOnline=row[1], lastSeen=row[2], socketId=row[3])

    async def get_presence(self, user_id: str) -> Optional[UserPresence]:
        with storage_errors("get_presence"):
            row = self._db.connection.execute(
                "SELECT id, is_online, last_seen, socket_id FROM users WHERE id = ?",
                [user_id],
            ).fetchone()
        if row is None:
            return None
        return UserPresence(userId=row[0], isOnline=row[1], lastSeen=row[2], socketId=row[3])

    async def count_online(self) -> int:
        with storage_errors("count_online"):
            row = self._db.connection.execute(
                "SELECT count(*) FROM users WHERE is_online"
            ).fetchone()
        return int(row[0])


class DuckDBAttachmentCatalog(AttachmentCatalog):
    """AttachmentCatalog over the ``attachments`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def add(
        self,
        owner_id: str,
        filename: str,
        storage_url: str,
        mime: Optional[str] = None,
        size: Optional[int] = None,
    ) -> AttachmentInfo:
        """Record metadata for a file the upload service already stored."""
        attachment = AttachmentInfo(
            id=str(uuid.uuid4()),
            filename=filename,
            mime=mime,
            size=size,
            storageUrl=storage_url,
            createdAt=utcnow(),
        )
        with storage_errors("add_attachment"):
            self._db.connection.execute(
                """
                INSERT INTO attachments (id, owner_id, filename, mime, size, storage_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    attachment.id, owner_id, filename, mime, size,
                    storage_url, attachment.createdAt,
                ],
            )
        return attachment

    async def resolve(self, attachment_ids: Iterable[str]) -> List[AttachmentInfo]:
        ids = [str(a) for a in attachment_ids]
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with storage_errors("resolve_attachments"):
            rows = self._db.connection.execute(
                f"""
                SELECT id, filename, mime, size, storage_url, created_at
                FROM attachments
                WHERE id IN ({placeholders})
                """,
                ids,
            ).fetchall()
        by_id = {
            row[0]: AttachmentInfo(
                id=row[0],
                filename=row[1],
                mime=row[2],
                size=row[3],
                storageUrl=row[4],
                createdAt=row[5],
            )
            for row in rows
        }
        missing = [a for a in ids if a not in by_id]
        if missing:
            logger.debug("[Attachments] Unknown attachment ids skipped: %s", missing)
        return [by_id[a] for a in ids if a in by_id]
