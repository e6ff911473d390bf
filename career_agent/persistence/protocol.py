"""ChatRepository protocol: the contract both in-memory and SQLite repositories implement."""

from __future__ import annotations

from typing import List, Optional, runtime_checkable

from typing_extensions import Protocol

from ..memory.models import MemoryItem
from .models import ChatRecord, MessageRecord


@runtime_checkable
class ChatRepository(Protocol):
    """Persistence surface consumed by the chat service.

    Each call is expected to be transactional on its own.
    """

    # -- lifecycle -----------------------------------------------------------
    async def start(self) -> None: ...
    async def stop(self) -> None: ...

    # -- chats ---------------------------------------------------------------
    async def get_chat_by_id(self, chat_id: str) -> Optional[ChatRecord]: ...

    async def save_chat(self, chat: ChatRecord) -> None: ...

    async def delete_chat_by_id(self, chat_id: str) -> Optional[ChatRecord]: ...

    # -- messages ------------------------------------------------------------
    async def get_messages_by_chat_id(self, chat_id: str, limit: Optional[int] = None) -> List[MessageRecord]: ...

    async def get_message_by_id(self, message_id: str) -> Optional[MessageRecord]: ...

    async def save_messages(self, messages: List[MessageRecord]) -> int: ...

    async def get_message_count_by_user_id(self, user_id: str, since: str) -> int: ...

    # -- conversation memory -------------------------------------------------
    async def get_conversation_memory_by_chat_id(self, chat_id: str) -> List[MemoryItem]: ...

    async def save_conversation_memory(self, chat_id: str, item: MemoryItem) -> None: ...
