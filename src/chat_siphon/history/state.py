"""Durable conversation history with SQLite persistence."""

import json
import sqlite3
from pathlib import Path
from typing import Self

from chat_siphon.history.conversation import ConversationRecord, MessageEntry


class HistoryState:
    """Persists the minimal history needed to resume without re-delivery.

    Stores, per conversation, its title, group flag and next sequence
    number, plus every retained entry's identity and hash keys.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize history state with database path.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
        """
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the conversations and entries tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS conversations (
                chat_key TEXT PRIMARY KEY,
                title TEXT,
                is_group INTEGER NOT NULL DEFAULT 0,
                next_sequence INTEGER NOT NULL DEFAULT 1,
                updated_seq INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS entries (
                chat_key TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                id TEXT NOT NULL,
                base_hash TEXT NOT NULL,
                prev_base_hash TEXT NOT NULL,
                content_hashes TEXT NOT NULL,
                sender_key TEXT NOT NULL DEFAULT '',
                pos_hash TEXT NOT NULL DEFAULT '',
                PRIMARY KEY (chat_key, sequence)
            );
        """)
        self._conn.commit()

    def save_conversation(self, record: ConversationRecord) -> None:
        """Replace the stored state of one conversation.

        Also marks it as the most recently updated conversation.

        Args:
            record: Conversation snapshot from HistoryEngine.export_conversation()
        """
        with self._conn:
            cursor = self._conn.execute("SELECT COALESCE(MAX(updated_seq), 0) + 1 FROM conversations")
            updated_seq = cursor.fetchone()[0]
            self._conn.execute(
                """
                INSERT INTO conversations (chat_key, title, is_group, next_sequence, updated_seq)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(chat_key) DO UPDATE SET
                    title = excluded.title,
                    is_group = excluded.is_group,
                    next_sequence = excluded.next_sequence,
                    updated_seq = excluded.updated_seq
                """,
                (record.chat_key, record.title, int(record.is_group), record.next_sequence, updated_seq),
            )
            self._conn.execute("DELETE FROM entries WHERE chat_key = ?", (record.chat_key,))
            self._conn.executemany(
                """
                INSERT INTO entries (
                    chat_key, sequence, id, base_hash, prev_base_hash,
                    content_hashes, sender_key, pos_hash
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        record.chat_key,
                        entry.sequence,
                        entry.id,
                        entry.base_hash,
                        entry.prev_base_hash,
                        json.dumps(entry.content_hashes),
                        entry.sender_key,
                        entry.pos_hash,
                    )
                    for entry in record.entries
                ],
            )

    def load_conversations(self) -> list[ConversationRecord]:
        """Load all stored conversations, least recently updated first."""
        cursor = self._conn.execute(
            """
            SELECT chat_key, title, is_group, next_sequence
            FROM conversations
            ORDER BY updated_seq
            """
        )
        records = [
            ConversationRecord(
                chat_key=row["chat_key"],
                title=row["title"],
                is_group=bool(row["is_group"]),
                next_sequence=row["next_sequence"],
            )
            for row in cursor.fetchall()
        ]
        for record in records:
            record.entries = self._load_entries(record.chat_key)
        return records

    def list_chat_keys(self) -> list[str]:
        """List stored conversation keys, least recently updated first."""
        cursor = self._conn.execute("SELECT chat_key FROM conversations ORDER BY updated_seq")
        return [row["chat_key"] for row in cursor]

    def delete_conversation(self, chat_key: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM entries WHERE chat_key = ?", (chat_key,))
            self._conn.execute("DELETE FROM conversations WHERE chat_key = ?", (chat_key,))

    def _load_entries(self, chat_key: str) -> list[MessageEntry]:
        cursor = self._conn.execute(
            """
            SELECT sequence, id, base_hash, prev_base_hash, content_hashes, sender_key, pos_hash
            FROM entries
            WHERE chat_key = ?
            ORDER BY sequence
            """,
            (chat_key,),
        )
        return [
            MessageEntry(
                handle=-1,  # Assigned by Conversation.from_record()
                id=row["id"],
                sequence=row["sequence"],
                base_hash=row["base_hash"],
                prev_base_hash=row["prev_base_hash"],
                content_hashes=json.loads(row["content_hashes"]),
                sender_key=row["sender_key"],
                pos_hash=row["pos_hash"],
            )
            for row in cursor
        ]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
