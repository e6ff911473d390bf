"""Tests for message part handling and daily quotas."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from career_agent.chat.entitlements import EntitlementChecker, window_start_iso
from career_agent.chat.inputs import (
    DOCX_MEDIA_TYPE,
    PDF_MEDIA_TYPE,
    build_agent_input,
    choose_analysis_type,
    history_from_records,
    is_analyzable_file,
    parts_to_text,
)
from career_agent.errors import APIError
from career_agent.persistence import ChatRecord, InMemoryChatRepository, MessageRecord


def test_parts_to_text_marks_files():
    parts = [{"type": "text", "text": "Here it is"}, {"type": "file", "url": "/blobs/x.pdf"}]
    assert parts_to_text(parts) == "Here it is [file]"


def test_plain_text_message_passes_through():
    assert build_agent_input([{"type": "text", "text": "hello"}]) == "hello"


def test_analyzable_files():
    assert is_analyzable_file({"type": "image"})
    assert is_analyzable_file({"type": "file", "media_type": "image/png"})
    assert is_analyzable_file({"type": "file", "media_type": PDF_MEDIA_TYPE})
    assert is_analyzable_file({"type": "file", "media_type": DOCX_MEDIA_TYPE})
    assert not is_analyzable_file({"type": "file", "media_type": "text/csv"})
    assert not is_analyzable_file({"type": "text", "text": "x"})


def test_file_message_becomes_analysis_request():
    parts = [
        {"type": "text", "text": "Can you review my resume?"},
        {"type": "file", "url": "/blobs/abc/cv.pdf", "name": "cv.pdf", "media_type": PDF_MEDIA_TYPE},
    ]
    agent_input = build_agent_input(parts)
    assert agent_input.startswith("I need you to analyze a file using the analyze_file tool.")
    assert "The file URL is: /blobs/abc/cv.pdf." in agent_input
    assert 'The filename is: "cv.pdf".' in agent_input
    assert agent_input.endswith("Please use analysis type: resume_review")


def test_file_without_text_uses_default_query():
    parts = [{"type": "file", "url": "/blobs/a.png", "media_type": "image/png"}]
    agent_input = build_agent_input(parts)
    assert 'The user\'s question is: "Please analyze this file".' in agent_input
    assert agent_input.endswith("Please use analysis type: general")


def test_file_without_url_falls_back_to_query():
    parts = [{"type": "text", "text": "what is this"}, {"type": "image"}]
    assert build_agent_input(parts) == "what is this"


@pytest.mark.parametrize(
    ("query", "media_type", "expected"),
    [
        ("check my CV", None, "resume_review"),
        ("please transcribe", "image/png", "text_extraction"),
        ("fill in this form", None, "document_analysis"),
        ("what do you think", PDF_MEDIA_TYPE, "pdf_analysis"),
        ("what do you think", "image/png", "general"),
    ],
)
def test_choose_analysis_type(query, media_type, expected):
    assert choose_analysis_type(query, media_type) == expected


def test_history_from_records_limits_and_skips_empty():
    records = [
        MessageRecord(id="1", chat_id="c", role="user", parts=[{"type": "text", "text": "one"}]),
        MessageRecord(id="2", chat_id="c", role="assistant", parts=[{"type": "text", "text": "two"}]),
        MessageRecord(id="3", chat_id="c", role="assistant", parts=[]),
        MessageRecord(id="4", chat_id="c", role="user", parts=[{"type": "text", "text": "four"}]),
    ]
    history = history_from_records(records, limit=3)
    assert [(m.role, m.text) for m in history] == [("assistant", "two"), ("user", "four")]
    assert history_from_records(records, limit=0) == []


class TestEntitlements:
    """Rolling 24 hour quota per user type."""

    @staticmethod
    async def _repo_with_messages(user_id: str, count: int) -> InMemoryChatRepository:
        repo = InMemoryChatRepository()
        await repo.save_chat(ChatRecord(id="chat_1", user_id=user_id, title="t"))
        await repo.save_messages(
            [
                MessageRecord(id=f"m{i}", chat_id="chat_1", role="user", parts=[{"type": "text", "text": "hi"}])
                for i in range(count)
            ]
        )
        return repo

    @pytest.mark.asyncio
    async def test_under_limit_returns_count(self):
        repo = await self._repo_with_messages("u1", 2)
        checker = EntitlementChecker(repo, {"guest": 3, "regular": 10})
        assert await checker.check("u1", "guest") == 2

    @pytest.mark.asyncio
    async def test_at_limit_is_rejected(self):
        repo = await self._repo_with_messages("u1", 3)
        checker = EntitlementChecker(repo, {"guest": 3, "regular": 10})
        with pytest.raises(APIError) as exc_info:
            await checker.check("u1", "guest")
        error = exc_info.value
        assert error.status_code == 429
        assert error.code == "MESSAGE_QUOTA_EXCEEDED"
        assert error.details["limit"] == 3
        assert error.details["window_hours"] == 24
        assert error.details["kind"] == "rate_limited"

    @pytest.mark.asyncio
    async def test_other_users_do_not_count(self):
        repo = await self._repo_with_messages("someone_else", 5)
        checker = EntitlementChecker(repo, {"guest": 3})
        assert await checker.check("u1", "guest") == 0

    def test_unknown_user_type_gets_strictest_limit(self):
        checker = EntitlementChecker(InMemoryChatRepository(), {"guest": 20, "regular": 100})
        assert checker.limit_for("regular") == 100
        assert checker.limit_for("enterprise") == 20

    def test_window_start(self):
        now = datetime(2025, 3, 2, 12, 30, 15, 999, tzinfo=timezone.utc)
        assert window_start_iso(now) == "2025-03-01T12:30:15Z"
