"""Raw events emitted by the agent runner while a run streams.

These mirror the shapes of agent SDK stream events (a ``type`` tag plus a
payload) and are intentionally loose; the stream adapter is the only code
that interprets them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

RAW_RESPONSE_EVENT = "raw_response_event"
RUN_ITEM_EVENT = "run_item_stream_event"
AGENT_UPDATED_EVENT = "agent_updated_stream_event"

TEXT_DELTA_TYPE = "response.output_text.delta"

TOOL_CALLED = "tool_called"
TOOL_OUTPUT = "tool_output"
HANDOFF_REQUESTED = "handoff_requested"
HANDOFF_OCCURRED = "handoff_occurred"


@dataclass
class TextDelta:
    delta: str
    type: str = TEXT_DELTA_TYPE


@dataclass
class RawResponseEvent:
    data: Any
    type: str = RAW_RESPONSE_EVENT


@dataclass
class ToolCallItem:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass
class ToolOutputItem:
    name: str
    output: Any
    call_id: Optional[str] = None


@dataclass
class HandoffItem:
    source_agent: str
    target_agent: str
    call_id: Optional[str] = None


@dataclass
class RunItemStreamEvent:
    name: str
    item: Any
    type: str = RUN_ITEM_EVENT


@dataclass
class AgentRef:
    id: str
    name: str


@dataclass
class AgentUpdatedStreamEvent:
    new_agent: AgentRef
    type: str = AGENT_UPDATED_EVENT


def text_delta_event(text: str) -> RawResponseEvent:
    return RawResponseEvent(data=TextDelta(delta=text))
