"""Provider-neutral chat, tool and streaming types used by the agent runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ROLES = ("system", "user", "assistant", "tool")


@dataclass
class FunctionCall:
    """A tool (or hand-off) call requested by the model."""

    name: str
    arguments: Dict[str, Any]
    id: Optional[str] = None


@dataclass
class FunctionResponse:
    """The payload returned to the model for one FunctionCall."""

    name: str
    response: Dict[str, Any]
    call_id: Optional[str] = None


@dataclass
class MessagePart:
    text: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None


@dataclass
class Message:
    """One entry of the conversation sent to a provider."""

    role: str
    parts: List[MessagePart] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported message role: {self.role}")

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", parts=[MessagePart(text=text)])

    @classmethod
    def assistant(cls, text: str, calls: Optional[List[FunctionCall]] = None) -> "Message":
        parts = [MessagePart(text=text)] if text else []
        parts.extend(MessagePart(function_call=call) for call in calls or [])
        return cls(role="assistant", parts=parts)

    @classmethod
    def tool_results(cls, responses: List[FunctionResponse]) -> "Message":
        return cls(role="tool", parts=[MessagePart(function_response=r) for r in responses])

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.parts if p.text)

    @property
    def function_calls(self) -> List[FunctionCall]:
        return [p.function_call for p in self.parts if p.function_call]


@dataclass
class ToolSchema:
    """JSON-schema description of a callable tool."""

    name: str
    description: str
    parameters: Dict[str, Any]

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class GenerationConfig:
    system_prompt: str = ""
    max_tokens: int = 2048
    temperature: Optional[float] = 0.7
    # Per-persona model override; providers fall back to their own default.
    model: Optional[str] = None


@dataclass
class StreamDelta:
    """One normalized chunk of a streaming completion.

    A delta carries either text, the start of a function call, or a chunk of
    a function call's JSON arguments. Calls are keyed by id when the provider
    sends one and by index otherwise.
    """

    text: Optional[str] = None
    function_call_start: Optional[FunctionCall] = None
    function_call_delta: Optional[str] = None
    function_call_id: Optional[str] = None
    function_call_index: Optional[int] = None
    finish_reason: Optional[str] = None
