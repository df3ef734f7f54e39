"""DuckDB database shared by the chat and presence services.

DuckDB is embedded, so a single connection per process is opened and every
store receives it through the ``Database`` wrapper. In a multi-worker
deployment each process opens its own connection to the same file; the
uniqueness constraints below are what keep concurrent writers consistent.

Database Schema:
    users:                  presence columns mutated by the presence tracker
    attachments:            attachment metadata resolved for chat payloads
    global_messages:        append-only broadcast messages
    conversations:          one row per unordered participant pair
    conversation_messages:  ordered private messages (seq per conversation)
    read_marks:             last-read timestamp per (conversation, user)
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

import duckdb

from .chat.errors import PersistenceFailure

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id           VARCHAR PRIMARY KEY,
        username     VARCHAR NOT NULL,
        display_name VARCHAR,
        avatar_url   VARCHAR,
        is_banned    BOOLEAN NOT NULL DEFAULT FALSE,
        banned_until TIMESTAMP,
        is_online    BOOLEAN NOT NULL DEFAULT FALSE,
        last_seen    TIMESTAMP,
        socket_id    VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attachments (
        id          VARCHAR PRIMARY KEY,
        owner_id    VARCHAR NOT NULL,
        filename    VARCHAR NOT NULL,
        mime        VARCHAR,
        size        BIGINT,
        storage_url VARCHAR NOT NULL,
        created_at  TIMESTAMP NOT NULL
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS global_messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS global_messages (
        id          VARCHAR PRIMARY KEY,
        seq         BIGINT DEFAULT nextval('global_messages_seq'),
        sender_id   VARCHAR NOT NULL,
        text        VARCHAR NOT NULL DEFAULT '',
        attachments VARCHAR NOT NULL DEFAULT '[]',
        created_at  TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id              VARCHAR PRIMARY KEY,
        room_key        VARCHAR NOT NULL UNIQUE,
        participant_a   VARCHAR NOT NULL,
        participant_b   VARCHAR NOT NULL,
        last_message_at TIMESTAMP NOT NULL,
        created_at      TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_messages (
        id              VARCHAR PRIMARY KEY,
        conversation_id VARCHAR NOT NULL,
        seq             INTEGER NOT NULL,
        sender_id       VARCHAR NOT NULL,
        text            VARCHAR NOT NULL DEFAULT '',
        attachments     VARCHAR NOT NULL DEFAULT '[]',
        created_at      TIMESTAMP NOT NULL,
        UNIQUE (conversation_id, seq)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS read_marks (
        conversation_id VARCHAR NOT NULL,
        user_id         VARCHAR NOT NULL,
        last_read_at    TIMESTAMP NOT NULL,
        PRIMARY KEY (conversation_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conv_a ON conversations(participant_a)",
    "CREATE INDEX IF NOT EXISTS idx_conv_b ON conversations(participant_b)",
]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (DuckDB TIMESTAMP semantics)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise DuckDB errors as PersistenceFailure, keeping the cause."""
    try:
        yield
    except duckdb.Error as exc:
        logger.error("[Database] %s failed: %s", operation, exc)
        raise PersistenceFailure(f"{operation} failed") from exc


class Database:
    """Owns the DuckDB connection and the chat schema.

    Attributes:
        _instance: Singleton instance used by the application.
        _db_path: Path to the DuckDB file (``:memory:`` for tests).
    """

    _instance: Optional["Database"] = None
    _db_path: str = "forum_chat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Database] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "Database":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton (tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Active DuckDB connection, reopened if it was closed."""
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables, sequences and indexes. Idempotent."""
        conn = self.connection
        for statement in _SCHEMA:
            conn.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run a block of statements as one atomic write."""
        conn = self.connection
        conn.begin()
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
