"""Conversation memory item."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

MEMORY_ROLES = ("user", "assistant", "system")


def memory_timestamp() -> str:
    """UTC timestamp with microseconds so items written in one turn still sort."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class MemoryItem:
    role: str
    content: str
    agent_name: Optional[str] = None  # persona id that produced or received the item
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=memory_timestamp)
    id: str = field(default_factory=lambda: f"mem_{uuid.uuid4().hex[:12]}")

    def __post_init__(self) -> None:
        if self.role not in MEMORY_ROLES:
            raise ValueError(f"Unsupported memory role: {self.role}")

    @property
    def topics(self) -> List[str]:
        return list(self.metadata.get("topics") or [])

    @property
    def is_system(self) -> bool:
        return self.role == "system"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "agent_name": self.agent_name,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }
