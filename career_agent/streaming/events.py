"""Client-facing stream events and their SSE framing.

The union is closed: every event the chat stream carries is one of the
classes below. ``finish`` and ``error`` are terminal and a well-formed
stream contains exactly one of them, as its last event.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Union

TEXT_DELTA = "text-delta"
TOOL_CALL = "tool-call"
TOOL_RESULT = "tool-result"
AGENT_UPDATE = "agent-update"
DATA = "data"
FINISH = "finish"
ERROR = "error"

TERMINAL_EVENT_TYPES = frozenset({FINISH, ERROR})


@dataclass(frozen=True)
class TextDeltaEvent:
    type: ClassVar[str] = TEXT_DELTA
    delta: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "delta": self.delta}


@dataclass(frozen=True)
class ToolCallEvent:
    type: ClassVar[str] = TOOL_CALL
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }


@dataclass(frozen=True)
class ToolResultEvent:
    type: ClassVar[str] = TOOL_RESULT
    tool_call_id: str
    tool_name: str
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "result": self.result,
        }


@dataclass(frozen=True)
class AgentUpdateEvent:
    type: ClassVar[str] = AGENT_UPDATE
    persona_id: str
    persona_name: str
    previous_persona_id: Optional[str] = None
    reason: str = "handoff"  # "handoff" (inside the run) | "routed" (router decision)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "personaId": self.persona_id,
            "personaName": self.persona_name,
            "previousPersonaId": self.previous_persona_id,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class DataEvent:
    type: ClassVar[str] = DATA
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "kind": self.kind, "data": self.data}


@dataclass(frozen=True)
class FinishEvent:
    type: ClassVar[str] = FINISH
    message_id: str
    finish_reason: str = "stop"  # "stop" | "stopped"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "messageId": self.message_id, "finishReason": self.finish_reason}


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = ERROR
    kind: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "kind": self.kind, "message": self.message}


StreamEvent = Union[
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    AgentUpdateEvent,
    DataEvent,
    FinishEvent,
    ErrorEvent,
]


def is_terminal(event: StreamEvent) -> bool:
    return event.type in TERMINAL_EVENT_TYPES


def format_sse_event(event_id: str, payload: Dict[str, Any]) -> str:
    """Render one event using SSE framing."""
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
    return f"id: {event_id}\nevent: {payload['type']}\ndata: {data}\n\n"
