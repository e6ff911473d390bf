"""Provider protocol definition."""

from __future__ import annotations

from typing import AsyncIterator, List, Optional, Protocol

from .types import GenerationConfig, Message, StreamDelta, ToolSchema


class ChatProvider(Protocol):
    """Streaming chat-completion backend used by the agent runner.

    Backends whose chunks repeat the full text so far set a truthy
    ``cumulative_text`` attribute.
    """

    model: str

    def generate_stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]: ...
