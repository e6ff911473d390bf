"""Persisted chat and message records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

MESSAGE_STATUSES = ("complete", "incomplete")


def utc_now_iso() -> str:
    """Return current UTC time in ISO-8601 format."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def make_id(prefix: str) -> str:
    """Create opaque id with a readable prefix."""
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


@dataclass
class ChatRecord:
    id: str
    user_id: str
    title: str
    visibility: str = "private"
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "visibility": self.visibility,
            "created_at": self.created_at,
        }


@dataclass
class MessageRecord:
    """One persisted conversation turn half (user or assistant message).

    Records are immutable once saved; repositories ignore a second save of
    the same ``id``.
    """

    id: str
    chat_id: str
    role: str
    parts: List[Dict[str, Any]]
    created_at: str = field(default_factory=utc_now_iso)
    status: str = "complete"
    persona_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "".join(str(p.get("text") or "") for p in self.parts if p.get("type") == "text")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "role": self.role,
            "parts": [dict(p) for p in self.parts],
            "created_at": self.created_at,
            "status": self.status,
            "persona_id": self.persona_id,
            "metadata": dict(self.metadata),
        }


def derive_chat_title(text: str, max_length: int = 80) -> str:
    """Title from the first line of the first user message."""
    first_line = next((line.strip() for line in (text or "").splitlines() if line.strip()), "")
    if not first_line:
        return "New chat"
    if len(first_line) > max_length:
        return first_line[: max_length - 3].rstrip() + "..."
    return first_line
