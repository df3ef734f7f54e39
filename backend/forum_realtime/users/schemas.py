"""Pydantic schemas for the user-facing collaborators of the chat layer.

The user and attachment records are owned by the forum's CRUD layer; the
chat layer only reads profiles and attachment metadata and writes the
presence columns.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    """The subset of a forum user the chat layer needs.

    Attributes:
        id: User id.
        username: Unique login name.
        displayName: Name shown in the UI (may be empty).
        avatarUrl: Avatar image URL.
        isBanned: Moderation flag; banned users cannot send or type.
        bannedUntil: Optional end of a temporary ban.
    """
    id: str
    username: str
    displayName: Optional[str] = None
    avatarUrl: Optional[str] = None
    isBanned: bool = False
    bannedUntil: Optional[datetime] = None

    def is_banned_at(self, moment: datetime) -> bool:
        """True if the ban is active at ``moment`` (permanent when no end date)."""
        if not self.isBanned:
            return False
        return self.bannedUntil is None or self.bannedUntil > moment


class SenderInfo(BaseModel):
    """Display fields attached to outbound messages."""
    id: str
    username: str = "Unknown"
    displayName: str = "Unknown User"
    avatarUrl: Optional[str] = None


class UserPresence(BaseModel):
    """Persisted presence columns of a user."""
    userId: str
    isOnline: bool = False
    lastSeen: Optional[datetime] = None
    socketId: Optional[str] = None


class AttachmentInfo(BaseModel):
    """Attachment metadata resolved from an attachment id."""
    id: str
    filename: str
    mime: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    storageUrl: str
    createdAt: Optional[datetime] = None
