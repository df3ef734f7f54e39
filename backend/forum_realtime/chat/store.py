"""Conversation and message persistence backed by DuckDB.

Invariants:
    - One conversation per unordered participant pair. The ``room_key``
      column is UNIQUE; a concurrent first message that loses the insert
      race re-reads the winner's row instead of creating a duplicate.
    - Messages of a conversation are ordered by ``seq``, assigned inside the
      same transaction that inserts the message and bumps
      ``last_message_at``, so every append is one atomic write.
    - Read marks are upserted and never move backwards.

Thread Safety:
    The DuckDB connection is NOT thread-safe. All calls are made from the
    event loop; in a multi-worker deployment each process opens its own
    connection and DuckDB arbitrates the shared file.

Usage:
    store = DuckDBChatStore(database)
    conversation = await store.find_or_create_conversation(("a", "b"))
    message = await store.append_message(conversation.id, "a", "hi", [])
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import duckdb

from ..database import Database, storage_errors, utcnow
from .errors import PersistenceFailure
from .schemas import (
    Conversation,
    GlobalMessage,
    PrivateMessage,
    ReadMark,
    canonical_pair,
    private_room_key,
)

logger = logging.getLogger(__name__)


@dataclass
class ConversationSummary:
    """One row of a user's conversation list."""
    conversation: Conversation
    peerId: str
    lastMessage: Optional[PrivateMessage]
    unreadCount: int


class ChatStore(ABC):
    """Persistence interface consumed by the chat channels."""

    @abstractmethod
    async def create_global_message(
        self, sender_id: str, text: str, attachments: Sequence[str]
    ) -> GlobalMessage:
        """Append a message to the global room's history."""

    @abstractmethod
    async def global_history(self, page: int, limit: int) -> Tuple[List[GlobalMessage], int]:
        """Page through global messages, newest page first.

        Returns:
            (messages oldest-first within the page, total message count)
        """

    @abstractmethod
    async def find_conversation(self, participants: Sequence[str]) -> Optional[Conversation]:
        """Find the conversation of a pair (order-independent), without messages."""

    @abstractmethod
    async def find_or_create_conversation(self, participants: Sequence[str]) -> Conversation:
        """Find the pair's conversation, creating it on first use."""

    @abstractmethod
    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        attachments: Sequence[str],
    ) -> PrivateMessage:
        """Append a message and bump ``lastMessageAt`` atomically."""

    @abstractmethod
    async def set_read_mark(
        self, conversation_id: str, user_id: str, read_at: datetime
    ) -> ReadMark:
        """Upsert a user's read mark (monotonic)."""

    @abstractmethod
    async def get_conversation(self, participants: Sequence[str]) -> Optional[Conversation]:
        """Full conversation with all messages and read marks."""

    @abstractmethod
    async def private_history(
        self, participants: Sequence[str], page: int, limit: int
    ) -> Tuple[Optional[Conversation], List[PrivateMessage], bool]:
        """Page backwards from the newest message of a pair's conversation.

        Returns:
            (conversation or None, messages oldest-first, has_more)
        """

    @abstractmethod
    async def list_conversations(self, user_id: str, limit: int) -> List[ConversationSummary]:
        """Conversations of a user, most recently active first."""


def _attachments_out(raw: Optional[str]) -> List[str]:
    return json.loads(raw) if raw else []


class DuckDBChatStore(ChatStore):
    """ChatStore over the tables created by ``Database``."""

    def __init__(self, database: Database) -> None:
        self._db = database

    @property
    def _conn(self) -> duckdb.DuckDBPyConnection:
        return self._db.connection

    # -----------------------------------------------------------------------
    # Global room
    # -----------------------------------------------------------------------

    async def create_global_message(
        self, sender_id: str, text: str, attachments: Sequence[str]
    ) -> GlobalMessage:
        message = GlobalMessage(
            id=str(uuid.uuid4()),
            senderId=sender_id,
            text=text or "",
            attachments=[str(a) for a in attachments],
            createdAt=utcnow(),
        )
        with storage_errors("create_global_message"):
            self._conn.execute(
                """
                INSERT INTO global_messages (id, sender_id, text, attachments, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    message.id, message.senderId, message.text,
                    json.dumps(message.attachments), message.createdAt,
                ],
            )
        return message

    async def global_history(self, page: int, limit: int) -> Tuple[List[GlobalMessage], int]:
        offset = (max(page, 1) - 1) * limit
        with storage_errors("global_history"):
            total = self._conn.execute("SELECT count(*) FROM global_messages").fetchone()[0]
            rows = self._conn.execute(
                """
                SELECT id, sender_id, text, attachments, created_at
                FROM global_messages
                ORDER BY seq DESC
                LIMIT ? OFFSET ?
                """,
                [limit, offset],
            ).fetchall()
        messages = [
            GlobalMessage(
                id=row[0],
                senderId=row[1],
                text=row[2],
                attachments=_attachments_out(row[3]),
                createdAt=row[4],
            )
            for row in rows
        ]
        messages.reverse()
        return messages, int(total)

    # -----------------------------------------------------------------------
    # Conversations
    # -----------------------------------------------------------------------

    async def find_conversation(self, participants: Sequence[str]) -> Optional[Conversation]:
        room_key = private_room_key(*participants)
        with storage_errors("find_conversation"):
            row = self._conn.execute(
                """
                SELECT id, participant_a, participant_b, room_key, last_message_at
                FROM conversations WHERE room_key = ?
                """,
                [room_key],
            ).fetchone()
        if row is None:
            return None
        return Conversation(
            id=row[0],
            participants=[row[1], row[2]],
            roomKey=row[3],
            lastMessageAt=row[4],
            readMarks=self._read_marks(row[0]),
        )

    async def find_or_create_conversation(self, participants: Sequence[str]) -> Conversation:
        existing = await self.find_conversation(participants)
        if existing is not None:
            return existing

        first, second = canonical_pair(*participants)
        now = utcnow()
        conversation = Conversation(
            id=str(uuid.uuid4()),
            participants=[first, second],
            roomKey=private_room_key(first, second),
            lastMessageAt=now,
        )
        try:
            self._conn.execute(
                """
                INSERT INTO conversations
                    (id, room_key, participant_a, participant_b, last_message_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [conversation.id, conversation.roomKey, first, second, now, now],
            )
        except duckdb.ConstraintException:
            # Another writer created the pair's conversation first.
            logger.info(
                "[Store] Conversation %s created concurrently, re-reading",
                conversation.roomKey,
            )
            existing = await self.find_conversation(participants)
            if existing is None:
                raise PersistenceFailure("conversation vanished after conflict")
            return existing
        except duckdb.Error as exc:
            logger.error("[Store] create_conversation failed: %s", exc)
            raise PersistenceFailure("create_conversation failed") from exc

        logger.info("[Store] Created conversation %s (%s)", conversation.id, conversation.roomKey)
        return conversation

    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        attachments: Sequence[str],
    ) -> PrivateMessage:
        message = PrivateMessage(
            id=str(uuid.uuid4()),
            senderId=sender_id,
            text=text or "",
            attachments=[str(a) for a in attachments],
            createdAt=utcnow(),
        )
        with storage_errors("append_message"), self._db.transaction() as conn:
            seq = conn.execute(
                "SELECT coalesce(max(seq), -1) + 1 FROM conversation_messages "
                "WHERE conversation_id = ?",
                [conversation_id],
            ).fetchone()[0]
            conn.execute(
                """
                INSERT INTO conversation_messages
                    (id, conversation_id, seq, sender_id, text, attachments, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    message.id, conversation_id, seq, sender_id, message.text,
                    json.dumps(message.attachments), message.createdAt,
                ],
            )
            conn.execute(
                "UPDATE conversations SET last_message_at = ? WHERE id = ?",
                [message.createdAt, conversation_id],
            )
        return message

    async def set_read_mark(
        self, conversation_id: str, user_id: str, read_at: datetime
    ) -> ReadMark:
        with storage_errors("set_read_mark"):
            row = self._conn.execute(
                """
                INSERT INTO read_marks (conversation_id, user_id, last_read_at)
                VALUES (?, ?, ?)
                ON CONFLICT (conversation_id, user_id) DO UPDATE SET
                    last_read_at = greatest(last_read_at, excluded.last_read_at)
                RETURNING user_id, last_read_at
                """,
                [conversation_id, user_id, read_at],
            ).fetchone()
        return ReadMark(userId=row[0], lastReadAt=row[1])

    async def get_conversation(self, participants: Sequence[str]) -> Optional[Conversation]:
        conversation = await self.find_conversation(participants)
        if conversation is None:
            return None
        conversation.messages = self._messages(conversation.id)
        return conversation

    async def private_history(
        self, participants: Sequence[str], page: int, limit: int
    ) -> Tuple[Optional[Conversation], List[PrivateMessage], bool]:
        conversation = await self.find_conversation(participants)
        if conversation is None:
            return None, [], False

        with storage_errors("private_history"):
            total = self._conn.execute(
                "SELECT count(*) FROM conversation_messages WHERE conversation_id = ?",
                [conversation.id],
            ).fetchone()[0]
        page = max(page, 1)
        start = max(0, total - page * limit)
        end = total - (page - 1) * limit
        if end <= 0:
            return conversation, [], False
        messages = self._messages(conversation.id, offset=start, limit=end - start)
        return conversation, messages, start > 0

    async def list_conversations(self, user_id: str, limit: int) -> List[ConversationSummary]:
        with storage_errors("list_conversations"):
            rows = self._conn.execute(
                """
                SELECT id, participant_a, participant_b, room_key, last_message_at
                FROM conversations
                WHERE participant_a = ? OR participant_b = ?
                ORDER BY last_message_at DESC
                LIMIT ?
                """,
                [user_id, user_id, limit],
            ).fetchall()

        summaries: List[ConversationSummary] = []
        for row in rows:
            conversation = Conversation(
                id=row[0],
                participants=[row[1], row[2]],
                roomKey=row[3],
                lastMessageAt=row[4],
                readMarks=self._read_marks(row[0]),
            )
            peer_id = conversation.peer_of(user_id)
            if peer_id is None:
                # Self-conversation; nothing to list.
                continue
            last = self._messages(conversation.id, offset=None, limit=1, newest=True)
            summaries.append(ConversationSummary(
                conversation=conversation,
                peerId=peer_id,
                lastMessage=last[0] if last else None,
                unreadCount=self._unread_count(conversation, user_id),
            ))
        return summaries

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _read_marks(self, conversation_id: str) -> Dict[str, ReadMark]:
        with storage_errors("read_marks"):
            rows = self._conn.execute(
                "SELECT user_id, last_read_at FROM read_marks WHERE conversation_id = ?",
                [conversation_id],
            ).fetchall()
        return {row[0]: ReadMark(userId=row[0], lastReadAt=row[1]) for row in rows}

    def _messages(
        self,
        conversation_id: str,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        newest: bool = False,
    ) -> List[PrivateMessage]:
        order = "DESC" if newest else "ASC"
        sql = (
            "SELECT id, sender_id, text, attachments, created_at "
            "FROM conversation_messages WHERE conversation_id = ? "
            f"ORDER BY seq {order}"
        )
        params: list = [conversation_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        if offset is not None:
            sql += " OFFSET ?"
            params.append(offset)
        with storage_errors("messages"):
            rows = self._conn.execute(sql, params).fetchall()
        return [
            PrivateMessage(
                id=row[0],
                senderId=row[1],
                text=row[2],
                attachments=_attachments_out(row[3]),
                createdAt=row[4],
            )
            for row in rows
        ]

    def _unread_count(self, conversation: Conversation, user_id: str) -> int:
        mark = conversation.readMarks.get(user_id)
        with storage_errors("unread_count"):
            if mark is None:
                row = self._conn.execute(
                    """
                    SELECT count(*) FROM conversation_messages
                    WHERE conversation_id = ? AND sender_id <> ?
                    """,
                    [conversation.id, user_id],
                ).fetchone()
            else:
                row = self._conn.execute(
                    """
                    SELECT count(*) FROM conversation_messages
                    WHERE conversation_id = ? AND sender_id <> ? AND created_at > ?
                    """,
                    [conversation.id, user_id, mark.lastReadAt],
                ).fetchone()
        return int(row[0])
