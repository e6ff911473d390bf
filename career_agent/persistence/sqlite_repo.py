"""SQLite-backed ChatRepository, durable across restarts."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import aiosqlite

from ..memory.models import MemoryItem
from .models import ChatRecord, MessageRecord

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS chats (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    visibility TEXT NOT NULL DEFAULT 'private',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chats_user ON chats(user_id);

CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    chat_id TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    parts_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'complete',
    persona_id TEXT,
    metadata_json TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, seq);

CREATE TABLE IF NOT EXISTS conversation_memory (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL,
    chat_id TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    agent_name TEXT,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memory_chat ON conversation_memory(chat_id, seq);
"""

# ---------------------------------------------------------------------------
# Helper: row → record
# ---------------------------------------------------------------------------


def _row_to_chat(row: aiosqlite.Row) -> ChatRecord:
    return ChatRecord(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        visibility=row["visibility"],
        created_at=row["created_at"],
    )


def _row_to_message(row: aiosqlite.Row) -> MessageRecord:
    return MessageRecord(
        id=row["id"],
        chat_id=row["chat_id"],
        role=row["role"],
        parts=json.loads(row["parts_json"]) if row["parts_json"] else [],
        created_at=row["created_at"],
        status=row["status"],
        persona_id=row["persona_id"],
        metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
    )


def _row_to_memory(row: aiosqlite.Row) -> MemoryItem:
    return MemoryItem(
        id=row["id"],
        role=row["role"],
        content=row["content"],
        agent_name=row["agent_name"],
        metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
        timestamp=row["timestamp"],
    )


class SQLiteChatRepository:
    """ChatRepository on a single aiosqlite connection.

    Writes are serialized with an asyncio lock so each method commits as one
    transaction.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        if self._db is not None:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._db.executescript(_SCHEMA_SQL)
        await self._db.commit()
        logger.info("SQLite chat repository ready at %s", self._db_path)

    async def stop(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SQLiteChatRepository.start() has not been called")
        return self._db

    # -- chats -------------------------------------------------------------

    async def get_chat_by_id(self, chat_id: str) -> Optional[ChatRecord]:
        async with self.db.execute("SELECT * FROM chats WHERE id = ?", (chat_id,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_chat(row) if row else None

    async def save_chat(self, chat: ChatRecord) -> None:
        async with self._lock:
            await self.db.execute(
                """
                INSERT INTO chats (id, user_id, title, visibility, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET title = excluded.title, visibility = excluded.visibility
                """,
                (chat.id, chat.user_id, chat.title, chat.visibility, chat.created_at),
            )
            await self.db.commit()

    async def delete_chat_by_id(self, chat_id: str) -> Optional[ChatRecord]:
        async with self._lock:
            chat = await self.get_chat_by_id(chat_id)
            if chat is None:
                return None
            await self.db.execute("DELETE FROM conversation_memory WHERE chat_id = ?", (chat_id,))
            await self.db.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
            await self.db.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
            await self.db.commit()
            return chat

    # -- messages ----------------------------------------------------------

    async def get_messages_by_chat_id(self, chat_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        if limit is not None:
            if limit <= 0:
                return []
            query = (
                "SELECT * FROM (SELECT * FROM messages WHERE chat_id = ? ORDER BY seq DESC LIMIT ?) "
                "ORDER BY seq ASC"
            )
            params: tuple = (chat_id, limit)
        else:
            query = "SELECT * FROM messages WHERE chat_id = ? ORDER BY seq ASC"
            params = (chat_id,)
        async with self.db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def get_message_by_id(self, message_id: str) -> Optional[MessageRecord]:
        async with self.db.execute("SELECT * FROM messages WHERE id = ?", (message_id,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_message(row) if row else None

    async def save_messages(self, messages: List[MessageRecord]) -> int:
        inserted = 0
        async with self._lock:
            try:
                for message in messages:
                    cursor = await self.db.execute(
                        """
                        INSERT OR IGNORE INTO messages
                            (id, chat_id, role, parts_json, created_at, status, persona_id, metadata_json)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            message.id,
                            message.chat_id,
                            message.role,
                            json.dumps(message.parts, ensure_ascii=False),
                            message.created_at,
                            message.status,
                            message.persona_id,
                            json.dumps(message.metadata, ensure_ascii=False, default=str),
                        ),
                    )
                    inserted += max(cursor.rowcount, 0)
                    await cursor.close()
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return inserted

    async def get_message_count_by_user_id(self, user_id: str, since: str) -> int:
        async with self.db.execute(
            """
            SELECT COUNT(*) AS n FROM messages m JOIN chats c ON c.id = m.chat_id
            WHERE c.user_id = ? AND m.role = 'user' AND m.created_at >= ?
            """,
            (user_id, since),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row["n"]) if row else 0

    # -- conversation memory -----------------------------------------------

    async def get_conversation_memory_by_chat_id(self, chat_id: str) -> List[MemoryItem]:
        async with self.db.execute(
            "SELECT * FROM conversation_memory WHERE chat_id = ? ORDER BY seq ASC",
            (chat_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_memory(row) for row in rows]

    async def save_conversation_memory(self, chat_id: str, item: MemoryItem) -> None:
        async with self._lock:
            await self.db.execute(
                """
                INSERT INTO conversation_memory (id, chat_id, role, content, agent_name, metadata_json, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    chat_id,
                    item.role,
                    item.content,
                    item.agent_name,
                    json.dumps(item.metadata, ensure_ascii=False, default=str),
                    item.timestamp,
                ),
            )
            await self.db.commit()
