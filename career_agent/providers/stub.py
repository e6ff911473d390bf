"""Deterministic offline provider for local development and contract tests."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional

from .types import GenerationConfig, Message, StreamDelta, ToolSchema


class StubProvider:
    """Streams a canned reply word by word without calling any model.

    The reply names the persona (first line of the system prompt) and echoes
    the last user message, which is enough to exercise routing, streaming and
    persistence end to end.
    """

    def __init__(self, model: str = "stub-model", chunk_delay: float = 0.0) -> None:
        self.model = model
        self.chunk_delay = chunk_delay

    async def generate_stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]:
        persona_line = (config.system_prompt or "").strip().splitlines()[:1]
        speaker = persona_line[0] if persona_line else "Assistant"
        last_user = next((m.text for m in reversed(messages) if m.role == "user"), "")
        reply = f"{speaker} Here is my take on: {last_user.strip() or 'your question'}"

        words = reply.split(" ")
        for index, word in enumerate(words):
            yield StreamDelta(text=word if index == 0 else f" {word}")
            # Yield control so readers observe incremental progress.
            await asyncio.sleep(self.chunk_delay)
        yield StreamDelta(finish_reason="stop")
