"""Client stream events and the adapter that produces them from agent runs."""

from .adapter import RunOutcome, RunState, StreamAdapter, StreamRun
from .events import (
    AgentUpdateEvent,
    DataEvent,
    ErrorEvent,
    FinishEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    format_sse_event,
    is_terminal,
)

__all__ = [
    "AgentUpdateEvent",
    "DataEvent",
    "ErrorEvent",
    "FinishEvent",
    "RunOutcome",
    "RunState",
    "StreamAdapter",
    "StreamEvent",
    "StreamRun",
    "TextDeltaEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "format_sse_event",
    "is_terminal",
]
