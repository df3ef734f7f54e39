"""Pydantic schemas for the real-time chat layer.

Field names are camelCase because they travel unchanged over the socket
protocol and the history endpoints.

These schemas are used by:
    - handlers.py: validation of inbound event payloads
    - store.py: conversation / message records read from DuckDB
    - global_channel.py / private_channel.py: outbound event payloads
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class ChatEvent(str, Enum):
    """Socket event names, inbound and outbound.

    Attributes:
        USER_ONLINE: Client self-declares a user id as online.
        USER_STATUS_CHANGED: Presence broadcast to every connection.
        GLOBAL_*: Broadcast room events.
        PRIVATE_*: Per-pair room events.
        NOTIFICATION_NEW: Notification pushed to a single user's connections.
        ACK: Reply to an inbound frame that carried an ``ackId``.
        CONNECTED: First frame sent after the handshake.
    """
    USER_ONLINE = "user:online"
    USER_STATUS_CHANGED = "user:status:changed"

    GLOBAL_JOIN = "chat:global:join"
    GLOBAL_LEAVE = "chat:global:leave"
    GLOBAL_MESSAGE = "chat:global:message"
    GLOBAL_TYPING = "chat:global:typing"
    GLOBAL_NEW = "chat:global:new"

    PRIVATE_JOIN = "chat:private:join"
    PRIVATE_LEAVE = "chat:private:leave"
    PRIVATE_MESSAGE = "chat:private:message"
    PRIVATE_TYPING = "chat:private:typing"
    PRIVATE_READ = "chat:private:read"
    PRIVATE_NEW = "chat:private:new"
    PRIVATE_NOTIFY = "chat:private:notify"

    NOTIFICATION_NEW = "notification:new"
    ACK = "ack"
    CONNECTED = "connected"


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Sort two user ids so (A, B) and (B, A) map to the same pair."""
    first, second = sorted((str(user_a), str(user_b)))
    return first, second


def private_room_key(user_a: str, user_b: str) -> str:
    """Room key shared by both participants of a private conversation."""
    return "_".join(canonical_pair(user_a, user_b))


# =============================================================================
# Inbound payloads
# =============================================================================


class MessageInput(BaseModel):
    """Message body sent by a client. Text may be empty when files are attached."""
    text: str = Field(default="", description="Message text")
    attachments: List[str] = Field(default_factory=list, description="Attachment ids")

    @field_validator("text", mode="before")
    @classmethod
    def _none_text(cls, value):
        return "" if value is None else value

    @field_validator("attachments", mode="before")
    @classmethod
    def _none_attachments(cls, value):
        return [] if value is None else value


class UserOnlinePayload(BaseModel):
    userId: str = Field(..., min_length=1)


class GlobalMessagePayload(BaseModel):
    message: MessageInput = Field(default_factory=MessageInput)


class GlobalTypingPayload(BaseModel):
    isTyping: bool = True


class PrivateMessagePayload(BaseModel):
    peerId: str = Field(..., min_length=1)
    message: MessageInput = Field(default_factory=MessageInput)


class PrivateTypingPayload(BaseModel):
    peerId: str = Field(..., min_length=1)
    isTyping: bool = True


class PrivateReadPayload(BaseModel):
    peerId: str = Field(..., min_length=1)


# =============================================================================
# Stored records
# =============================================================================


class GlobalMessage(BaseModel):
    """A message posted to the global room. Immutable once stored."""
    id: str
    senderId: str
    text: str = ""
    attachments: List[str] = Field(default_factory=list)
    createdAt: datetime


class PrivateMessage(BaseModel):
    """A message embedded in a conversation. Immutable once appended."""
    id: str
    senderId: str
    text: str = ""
    attachments: List[str] = Field(default_factory=list)
    createdAt: datetime


class ReadMark(BaseModel):
    """Last time ``userId`` read a conversation."""
    userId: str
    lastReadAt: datetime


class Conversation(BaseModel):
    """A private dialogue between exactly two users.

    Attributes:
        id: Conversation identifier.
        participants: Sorted pair of user ids.
        roomKey: Multicast room key derived from ``participants``.
        messages: Messages in send order (may be left empty by list queries).
        lastMessageAt: Timestamp of the newest message (creation time if none).
        readMarks: Read state keyed by user id.
    """
    id: str
    participants: List[str]
    roomKey: str
    messages: List[PrivateMessage] = Field(default_factory=list)
    lastMessageAt: datetime
    readMarks: Dict[str, ReadMark] = Field(default_factory=dict)

    def peer_of(self, user_id: str) -> Optional[str]:
        for participant in self.participants:
            if participant != user_id:
                return participant
        return None
