"""Tests for SQLiteChatRepository: persistence, idempotent saves, counts and cascade delete."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from career_agent.memory import MemoryItem
from career_agent.persistence import (
    ChatRecord,
    ChatRepository,
    InMemoryChatRepository,
    MessageRecord,
    SQLiteChatRepository,
    derive_chat_title,
)


@pytest_asyncio.fixture
async def repo(tmp_path: Path):
    """A started repository backed by a temp database."""
    repository = SQLiteChatRepository(tmp_path / "chat.db")
    await repository.start()
    yield repository
    await repository.stop()


def _message(message_id: str, chat_id: str = "chat_1", role: str = "user", text: str = "hi", **kwargs) -> MessageRecord:
    return MessageRecord(id=message_id, chat_id=chat_id, role=role, parts=[{"type": "text", "text": text}], **kwargs)


def test_repositories_satisfy_protocol(tmp_path: Path):
    assert isinstance(InMemoryChatRepository(), ChatRepository)
    assert isinstance(SQLiteChatRepository(tmp_path / "x.db"), ChatRepository)


# ---------------------------------------------------------------------------
# Chats and messages
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_chat_and_messages_survive_restart(tmp_path: Path):
    db_path = tmp_path / "shared.db"
    first = SQLiteChatRepository(db_path)
    await first.start()
    await first.save_chat(ChatRecord(id="chat_1", user_id="u1", title="Resume review"))
    await first.save_messages(
        [
            _message("m1", text="review my resume"),
            _message("m2", role="assistant", text="Partial", status="incomplete", persona_id="resume",
                     metadata={"stopped_by_user": True}),
        ]
    )
    await first.stop()

    second = SQLiteChatRepository(db_path)
    await second.start()
    try:
        chat = await second.get_chat_by_id("chat_1")
        assert chat.user_id == "u1"
        assert chat.title == "Resume review"

        messages = await second.get_messages_by_chat_id("chat_1")
        assert [m.id for m in messages] == ["m1", "m2"]
        assert messages[1].status == "incomplete"
        assert messages[1].persona_id == "resume"
        assert messages[1].metadata == {"stopped_by_user": True}
        assert messages[1].text == "Partial"
    finally:
        await second.stop()


@pytest.mark.asyncio
async def test_duplicate_message_id_is_ignored(repo):
    await repo.save_chat(ChatRecord(id="chat_1", user_id="u1", title="t"))
    assert await repo.save_messages([_message("m1", text="original")]) == 1
    assert await repo.save_messages([_message("m1", text="replacement")]) == 0

    stored = await repo.get_message_by_id("m1")
    assert stored.text == "original"
    assert len(await repo.get_messages_by_chat_id("chat_1")) == 1


@pytest.mark.asyncio
async def test_message_limit_returns_latest_in_order(repo):
    await repo.save_chat(ChatRecord(id="chat_1", user_id="u1", title="t"))
    await repo.save_messages([_message(f"m{i}", text=str(i)) for i in range(5)])

    latest = await repo.get_messages_by_chat_id("chat_1", limit=2)
    assert [m.id for m in latest] == ["m3", "m4"]
    assert await repo.get_messages_by_chat_id("chat_1", limit=0) == []


@pytest.mark.asyncio
async def test_user_message_count_window(repo):
    await repo.save_chat(ChatRecord(id="chat_1", user_id="u1", title="t"))
    await repo.save_chat(ChatRecord(id="chat_2", user_id="u2", title="t"))
    await repo.save_messages(
        [
            _message("old", created_at="2020-01-01T00:00:00Z"),
            _message("new", created_at="2030-01-01T00:00:00Z"),
            _message("reply", role="assistant", created_at="2030-01-01T00:00:01Z"),
            _message("other", chat_id="chat_2", created_at="2030-01-01T00:00:00Z"),
        ]
    )
    assert await repo.get_message_count_by_user_id("u1", "2025-01-01T00:00:00Z") == 1
    assert await repo.get_message_count_by_user_id("u1", "2000-01-01T00:00:00Z") == 2


@pytest.mark.asyncio
async def test_delete_cascades(repo):
    await repo.save_chat(ChatRecord(id="chat_1", user_id="u1", title="t"))
    await repo.save_messages([_message("m1")])
    await repo.save_conversation_memory("chat_1", MemoryItem(role="user", content="hi"))

    deleted = await repo.delete_chat_by_id("chat_1")
    assert deleted.id == "chat_1"
    assert await repo.get_chat_by_id("chat_1") is None
    assert await repo.get_message_by_id("m1") is None
    assert await repo.get_conversation_memory_by_chat_id("chat_1") == []
    assert await repo.delete_chat_by_id("chat_1") is None


# ---------------------------------------------------------------------------
# Conversation memory
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_memory_items_round_trip_in_insertion_order(repo):
    await repo.save_chat(ChatRecord(id="chat_1", user_id="u1", title="t"))
    await repo.save_conversation_memory("chat_1", MemoryItem(role="user", content="first", metadata={"topics": ["resume"]}))
    await repo.save_conversation_memory("chat_1", MemoryItem(role="assistant", content="second", agent_name="resume"))

    items = await repo.get_conversation_memory_by_chat_id("chat_1")
    assert [item.content for item in items] == ["first", "second"]
    assert items[0].topics == ["resume"]
    assert items[1].agent_name == "resume"


def test_unstarted_repository_raises(tmp_path: Path):
    repository = SQLiteChatRepository(tmp_path / "never.db")
    with pytest.raises(RuntimeError):
        repository.db


def test_derive_chat_title():
    assert derive_chat_title("  \nHelp with my resume\nmore") == "Help with my resume"
    assert derive_chat_title("") == "New chat"
    long_title = derive_chat_title("x" * 200, max_length=20)
    assert len(long_title) == 20
    assert long_title.endswith("...")
