"""Agent execution runtime: runs personas and streams raw SDK-style events."""

from .events import (
    AGENT_UPDATED_EVENT,
    RAW_RESPONSE_EVENT,
    RUN_ITEM_EVENT,
    AgentRef,
    AgentUpdatedStreamEvent,
    RawResponseEvent,
    RunItemStreamEvent,
    TextDelta,
    ToolCallItem,
    ToolOutputItem,
)
from .runner import AgentRunner, MaxStepsExceeded, RunContext, RunResultStreaming

__all__ = [
    "AGENT_UPDATED_EVENT",
    "AgentRef",
    "AgentRunner",
    "AgentUpdatedStreamEvent",
    "MaxStepsExceeded",
    "RAW_RESPONSE_EVENT",
    "RUN_ITEM_EVENT",
    "RawResponseEvent",
    "RunContext",
    "RunItemStreamEvent",
    "RunResultStreaming",
    "TextDelta",
    "ToolCallItem",
    "ToolOutputItem",
]
