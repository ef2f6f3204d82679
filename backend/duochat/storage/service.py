"""DuckDB-backed persistence for participants, rooms and messages.

This is the storage collaborator the chat core writes through. It assigns the
durable identifiers: message ids come from a single DuckDB sequence, so they
are unique and strictly increasing across all rooms.

Database Schema:
    participants:  id, display_name, created_at
    chat_rooms:    id, member_low, member_high, created_at
                   (one row per unordered pair, member_low < member_high)
    messages:      id, chat_room_id, sender_id, content, is_read,
                   receipt_delivered, created_at, read_at

Thread Safety:
    The DuckDB connection is guarded by a lock. The chat core itself runs on
    a single event loop; the lock only matters for callers on other threads
    (the test client, admin scripts).

Usage:
    store = ChatStore.get_instance()
    room, created = store.get_or_create_private_room(1, 2)
    message = store.insert_message(room.id, sender_id=1, content="hi")
"""
import logging
import threading
from datetime import datetime
from typing import List, Optional, Tuple

import duckdb

from .schemas import Message, Participant, Room, RoomSummary

logger = logging.getLogger(__name__)

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS participants_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS participants (
        id           INTEGER DEFAULT nextval('participants_seq') PRIMARY KEY,
        display_name VARCHAR NOT NULL,
        created_at   TIMESTAMP NOT NULL
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS chat_rooms_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS chat_rooms (
        id          INTEGER DEFAULT nextval('chat_rooms_seq') PRIMARY KEY,
        member_low  INTEGER NOT NULL,
        member_high INTEGER NOT NULL,
        created_at  TIMESTAMP NOT NULL,
        UNIQUE (member_low, member_high)
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id                BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
        chat_room_id      INTEGER NOT NULL,
        sender_id         INTEGER NOT NULL,
        content           VARCHAR NOT NULL,
        is_read           BOOLEAN NOT NULL DEFAULT false,
        receipt_delivered BOOLEAN NOT NULL DEFAULT false,
        created_at        TIMESTAMP NOT NULL,
        read_at           TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(chat_room_id)",
]

_MESSAGE_COLUMNS = "id, chat_room_id, sender_id, content, is_read, created_at"


class ChatStore:
    """Singleton service managing chat persistence in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["ChatStore"] = None
    _db_path: str = "duochat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: Path to DuckDB file, or ":memory:". Defaults to
                "duochat.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._lock = threading.RLock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[ChatStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ChatStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton. Used by tests."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def db_path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)

    def _fetchone(self, sql: str, params: list) -> Optional[tuple]:
        with self._lock:
            return self._get_connection().execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: list) -> List[tuple]:
        with self._lock:
            return self._get_connection().execute(sql, params).fetchall()

    # -----------------------------------------------------------------------
    # Participants
    # -----------------------------------------------------------------------

    def create_participant(self, display_name: str) -> Participant:
        row = self._fetchone(
            "INSERT INTO participants (display_name, created_at) VALUES (?, ?) RETURNING id",
            [display_name, datetime.utcnow()],
        )
        return Participant(id=row[0], display_name=display_name)

    def get_participant(self, participant_id: int) -> Optional[Participant]:
        row = self._fetchone(
            "SELECT id, display_name FROM participants WHERE id = ?", [participant_id]
        )
        return Participant(id=row[0], display_name=row[1]) if row else None

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------

    def get_or_create_private_room(self, user_a: int, user_b: int) -> Tuple[Room, bool]:
        """Return the pair's room, creating it on first chat initiation.

        Returns:
            Tuple of (room, created).

        Raises:
            ValueError: If both ids are the same participant.
        """
        if user_a == user_b:
            raise ValueError("Cannot chat with yourself")
        low, high = sorted((user_a, user_b))
        with self._lock:
            row = self._fetchone(
                "SELECT id, member_low, member_high, created_at FROM chat_rooms "
                "WHERE member_low = ? AND member_high = ?",
                [low, high],
            )
            if row:
                return self._row_to_room(row), False
            row = self._fetchone(
                "INSERT INTO chat_rooms (member_low, member_high, created_at) "
                "VALUES (?, ?, ?) RETURNING id, member_low, member_high, created_at",
                [low, high, datetime.utcnow()],
            )
        logger.info("[ChatStore] Created room %s for participants %s and %s", row[0], low, high)
        return self._row_to_room(row), True

    def get_room(self, room_id: int) -> Optional[Room]:
        row = self._fetchone(
            "SELECT id, member_low, member_high, created_at FROM chat_rooms WHERE id = ?",
            [room_id],
        )
        return self._row_to_room(row) if row else None

    def list_rooms(self, participant_id: int) -> List[RoomSummary]:
        """List a participant's rooms, most recently active first."""
        rows = self._fetchall(
            "SELECT r.id, r.member_low, r.member_high, p.display_name "
            "FROM chat_rooms r "
            "LEFT JOIN participants p ON p.id = "
            "  CASE WHEN r.member_low = ? THEN r.member_high ELSE r.member_low END "
            "WHERE r.member_low = ? OR r.member_high = ?",
            [participant_id, participant_id, participant_id],
        )
        summaries = []
        for room_id, low, high, other_name in rows:
            last = self._fetchone(
                "SELECT content, created_at FROM messages WHERE chat_room_id = ? "
                "ORDER BY id DESC LIMIT 1",
                [room_id],
            )
            unread = self._fetchone(
                "SELECT count(*) FROM messages "
                "WHERE chat_room_id = ? AND sender_id != ? AND NOT is_read",
                [room_id, participant_id],
            )
            summaries.append(RoomSummary(
                room_id=room_id,
                other_user_id=high if low == participant_id else low,
                other_display_name=other_name or "",
                last_message=last[0] if last else None,
                last_message_at=last[1] if last else None,
                unread_count=unread[0],
            ))
        summaries.sort(
            key=lambda s: (s.last_message_at or datetime.min, s.room_id),
            reverse=True,
        )
        return summaries

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def insert_message(self, room_id: int, sender_id: int, content: str) -> Message:
        """Persist a message and assign its durable id and timestamp."""
        row = self._fetchone(
            "INSERT INTO messages (chat_room_id, sender_id, content, created_at) "
            f"VALUES (?, ?, ?, ?) RETURNING {_MESSAGE_COLUMNS}",
            [room_id, sender_id, content, datetime.utcnow()],
        )
        return self._row_to_message(row)

    def get_message(self, message_id: int) -> Optional[Message]:
        row = self._fetchone(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id]
        )
        return self._row_to_message(row) if row else None

    def list_messages(
        self,
        room_id: int,
        limit: int = 50,
        before_id: Optional[int] = None,
    ) -> List[Message]:
        """Return up to ``limit`` messages older than ``before_id``, oldest first."""
        if before_id is None:
            rows = self._fetchall(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE chat_room_id = ? "
                "ORDER BY id DESC LIMIT ?",
                [room_id, limit],
            )
        else:
            rows = self._fetchall(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE chat_room_id = ? AND id < ? ORDER BY id DESC LIMIT ?",
                [room_id, before_id, limit],
            )
        return [self._row_to_message(row) for row in reversed(rows)]

    def mark_read(self, message_id: int) -> bool:
        """Flip a message to read.

        Returns:
            True if this call changed the state, False if it was already read.
        """
        row = self._fetchone(
            "UPDATE messages SET is_read = true, read_at = ? "
            "WHERE id = ? AND NOT is_read RETURNING id",
            [datetime.utcnow(), message_id],
        )
        return row is not None

    def claim_receipt(self, message_id: int) -> bool:
        """Atomically take ownership of delivering a message's read receipt.

        Returns:
            True exactly once per read message; False if the message is unread
            or its receipt was already claimed.
        """
        row = self._fetchone(
            "UPDATE messages SET receipt_delivered = true "
            "WHERE id = ? AND is_read AND NOT receipt_delivered RETURNING id",
            [message_id],
        )
        return row is not None

    def pending_receipts(self, sender_id: int, room_id: int) -> List[Message]:
        """Read messages of ``sender_id`` in a room whose receipt is undelivered."""
        rows = self._fetchall(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages "
            "WHERE sender_id = ? AND chat_room_id = ? AND is_read AND NOT receipt_delivered "
            "ORDER BY id ASC",
            [sender_id, room_id],
        )
        return [self._row_to_message(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_room(row: tuple) -> Room:
        return Room(id=row[0], members=(row[1], row[2]), created_at=row[3])

    @staticmethod
    def _row_to_message(row: tuple) -> Message:
        return Message(
            id=row[0],
            chat_room_id=row[1],
            sender_id=row[2],
            content=row[3],
            is_read=row[4],
            created_at=row[5],
        )
