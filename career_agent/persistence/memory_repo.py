"""In-process repository for local development and tests."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Dict, List, Optional

from ..memory.models import MemoryItem
from .models import ChatRecord, MessageRecord

logger = logging.getLogger(__name__)


class InMemoryChatRepository:
    """Dict-backed ChatRepository. Data lives as long as the process."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._chats: Dict[str, ChatRecord] = {}
        self._messages: Dict[str, List[MessageRecord]] = {}
        self._message_index: Dict[str, MessageRecord] = {}
        self._memory: Dict[str, List[MemoryItem]] = {}

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def get_chat_by_id(self, chat_id: str) -> Optional[ChatRecord]:
        async with self._lock:
            chat = self._chats.get(chat_id)
            return copy.deepcopy(chat) if chat else None

    async def save_chat(self, chat: ChatRecord) -> None:
        async with self._lock:
            self._chats[chat.id] = copy.deepcopy(chat)

    async def delete_chat_by_id(self, chat_id: str) -> Optional[ChatRecord]:
        async with self._lock:
            chat = self._chats.pop(chat_id, None)
            for message in self._messages.pop(chat_id, []):
                self._message_index.pop(message.id, None)
            self._memory.pop(chat_id, None)
            return chat

    async def get_messages_by_chat_id(self, chat_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        async with self._lock:
            messages = self._messages.get(chat_id, [])
            if limit is not None:
                messages = messages[-limit:] if limit > 0 else []
            return [copy.deepcopy(m) for m in messages]

    async def get_message_by_id(self, message_id: str) -> Optional[MessageRecord]:
        async with self._lock:
            message = self._message_index.get(message_id)
            return copy.deepcopy(message) if message else None

    async def save_messages(self, messages: List[MessageRecord]) -> int:
        inserted = 0
        async with self._lock:
            for message in messages:
                if message.id in self._message_index:
                    logger.debug("message_exists message_id=%s", message.id)
                    continue
                stored = copy.deepcopy(message)
                self._messages.setdefault(message.chat_id, []).append(stored)
                self._message_index[message.id] = stored
                inserted += 1
        return inserted

    async def get_message_count_by_user_id(self, user_id: str, since: str) -> int:
        async with self._lock:
            chat_ids = [chat.id for chat in self._chats.values() if chat.user_id == user_id]
            return sum(
                1
                for chat_id in chat_ids
                for message in self._messages.get(chat_id, [])
                if message.role == "user" and message.created_at >= since
            )

    async def get_conversation_memory_by_chat_id(self, chat_id: str) -> List[MemoryItem]:
        async with self._lock:
            return [copy.deepcopy(item) for item in self._memory.get(chat_id, [])]

    async def save_conversation_memory(self, chat_id: str, item: MemoryItem) -> None:
        async with self._lock:
            self._memory.setdefault(chat_id, []).append(copy.deepcopy(item))
