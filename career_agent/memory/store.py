"""Bounded rolling conversation memory with best-effort persistence."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from .models import MemoryItem
from .topics import extract_topics

logger = logging.getLogger(__name__)


class MemoryCapacityError(RuntimeError):
    """The memory is full of system items and nothing can be evicted."""


class MemoryRepository(Protocol):
    async def get_conversation_memory_by_chat_id(self, chat_id: str) -> List[MemoryItem]: ...

    async def save_conversation_memory(self, chat_id: str, item: MemoryItem) -> None: ...


class ConversationMemory:
    """Append-only, capped window of one chat's conversation.

    Invariants:
    - ``len(self) <= max_items`` after every append.
    - Eviction removes the oldest non-system item; system items are never evicted.
    - Persistence happens in background tasks; failures are logged, never raised.

    Topics and agents seen are derived from the stored items on every call.
    """

    def __init__(
        self,
        chat_id: str,
        max_items: int = 50,
        repository: Optional[MemoryRepository] = None,
        on_evict: Optional[Callable[[MemoryItem], None]] = None,
    ) -> None:
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        self.chat_id = chat_id
        self.max_items = max_items
        self._repository = repository
        self._on_evict = on_evict
        self._items: List[MemoryItem] = []
        self._pending: Set[asyncio.Task] = set()
        self.evicted_count = 0

    @classmethod
    async def load(
        cls,
        chat_id: str,
        repository: MemoryRepository,
        max_items: int = 50,
        on_evict: Optional[Callable[[MemoryItem], None]] = None,
    ) -> "ConversationMemory":
        """Rehydrate from the repository, applying the cap to what was stored."""
        memory = cls(chat_id, max_items=max_items, repository=repository, on_evict=on_evict)
        try:
            stored = await repository.get_conversation_memory_by_chat_id(chat_id)
        except Exception as exc:
            logger.warning("memory_load_failed chat_id=%s error=%s", chat_id, exc)
            return memory
        for item in stored:
            try:
                memory._append_local(item)
            except MemoryCapacityError:
                logger.warning("memory_load_truncated chat_id=%s item_id=%s", chat_id, item.id)
        return memory

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> List[MemoryItem]:
        return list(self._items)

    def append(self, item: MemoryItem) -> None:
        """Add an item, evicting if needed, then persist it in the background.

        Raises:
            MemoryCapacityError: If the memory is at its cap with only system items
        """
        self._append_local(item)
        self._schedule_persist(item)

    def add(self, role: str, content: str, agent_name: Optional[str] = None, **metadata: Any) -> MemoryItem:
        """Convenience wrapper that tags topics from the content."""
        meta = dict(metadata)
        meta.setdefault("topics", extract_topics(content))
        item = MemoryItem(role=role, content=content, agent_name=agent_name, metadata=meta)
        self.append(item)
        return item

    def _append_local(self, item: MemoryItem) -> None:
        if len(self._items) >= self.max_items:
            victim_index = next((i for i, existing in enumerate(self._items) if not existing.is_system), None)
            if victim_index is None:
                raise MemoryCapacityError(
                    f"Memory for chat {self.chat_id} holds {self.max_items} system items; nothing to evict"
                )
            victim = self._items.pop(victim_index)
            self.evicted_count += 1
            if self._on_evict:
                self._on_evict(victim)
        self._items.append(item)

    def _schedule_persist(self, item: MemoryItem) -> None:
        if self._repository is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("memory_persist_skipped chat_id=%s item_id=%s reason=no_event_loop", self.chat_id, item.id)
            return
        task = loop.create_task(self._persist(item))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, item: MemoryItem) -> None:
        try:
            await self._repository.save_conversation_memory(self.chat_id, item)
        except Exception as exc:
            # Memory is an optimization for continuity; losing a write must not fail the turn.
            logger.warning("memory_persist_failed chat_id=%s item_id=%s error=%s", self.chat_id, item.id, exc)

    async def flush(self) -> None:
        """Wait for background writes scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_recent_context(self, n: int) -> List[MemoryItem]:
        if n <= 0:
            return []
        return list(self._items[-n:])

    def render_context(self, n: int) -> str:
        """Recent items as text for instruction templates."""
        lines = []
        for item in self.get_recent_context(n):
            speaker = f"{item.role}/{item.agent_name}" if item.agent_name else item.role
            lines.append(f"[{speaker}] {item.content}")
        return "\n".join(lines)

    def get_all_topics(self) -> List[str]:
        seen: Dict[str, None] = {}
        for item in self._items:
            for topic in item.topics:
                seen.setdefault(topic, None)
        return list(seen)

    def get_agents_seen(self) -> List[str]:
        seen: Dict[str, None] = {}
        for item in self._items:
            if item.agent_name:
                seen.setdefault(item.agent_name, None)
        return list(seen)

    def latest_agent_name(self) -> Optional[str]:
        for item in reversed(self._items):
            if item.agent_name and item.role != "system":
                return item.agent_name
        return None

    def summary(self, n: int) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "items": [item.to_dict() for item in self.get_recent_context(n)],
            "topics": self.get_all_topics(),
            "agents_seen": self.get_agents_seen(),
            "size": len(self._items),
            "max_items": self.max_items,
        }
