"""Scripted test doubles for providers, runners and repositories."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from career_agent.persistence.memory_repo import InMemoryChatRepository
from career_agent.persistence.models import MessageRecord
from career_agent.providers.types import FunctionCall, GenerationConfig, Message, StreamDelta, ToolSchema


def text_deltas(*pieces: str) -> List[StreamDelta]:
    return [StreamDelta(text=piece) for piece in pieces] + [StreamDelta(finish_reason="stop")]


def call_deltas(name: str, arguments: str = "{}", call_id: Optional[str] = "call_1") -> List[StreamDelta]:
    return [
        StreamDelta(function_call_start=FunctionCall(name=name, arguments={}, id=call_id), function_call_id=call_id),
        StreamDelta(function_call_delta=arguments, function_call_id=call_id),
        StreamDelta(finish_reason="tool_calls"),
    ]


class ScriptedProvider:
    """Replays one scripted list of deltas per model call.

    ``gate_after`` pauses the given call after that many deltas until
    ``release`` is set, which lets tests act in the middle of a stream.
    """

    def __init__(self, steps: List[List[StreamDelta]], gate_after: Optional[int] = None) -> None:
        self.model = "scripted-model"
        self.steps = list(steps)
        self.calls: List[Dict[str, Any]] = []
        self.gate_after = gate_after
        self.reached_gate = asyncio.Event()
        self.release = asyncio.Event()

    async def generate_stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ):
        self.calls.append({"messages": list(messages), "tools": list(tools or []), "config": config})
        step = self.steps.pop(0) if self.steps else text_deltas("(no more script)")
        for index, delta in enumerate(step):
            if self.gate_after is not None and index == self.gate_after:
                self.reached_gate.set()
                await self.release.wait()
            await asyncio.sleep(0)
            yield delta


class FakeRunResult:
    """Stands in for ``RunResultStreaming`` with a fixed raw event list."""

    def __init__(
        self,
        events: List[Any],
        final_output: Optional[str] = None,
        error: Optional[Exception] = None,
        hang: bool = False,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.events = list(events)
        self.gate = gate
        self.final_output = final_output
        self.error = error
        self.hang = hang
        self.cancelled = False
        self.consumed = 0

    async def stream_events(self):
        if self.gate is not None:
            await self.gate.wait()
        for event in self.events:
            await asyncio.sleep(0)
            self.consumed += 1
            yield event
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error

    async def wait_complete(self) -> None:
        return None

    def cancel(self) -> None:
        self.cancelled = True


class FakeRunner:
    """Hands out prepared ``FakeRunResult`` objects in order."""

    def __init__(self, *results: FakeRunResult) -> None:
        self.results = list(results)
        self.started: List[Dict[str, Any]] = []

    def run_streamed(self, persona, agent_input, context, run_id=None) -> FakeRunResult:
        self.started.append({"persona": persona.id, "input": agent_input, "context": context, "run_id": run_id})
        return self.results.pop(0)


class FlakyRepository(InMemoryChatRepository):
    """In-memory repository whose assistant message saves fail a set number of times."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.save_attempts = 0

    async def save_messages(self, messages: List[MessageRecord]) -> int:
        if any(m.role == "assistant" for m in messages):
            self.save_attempts += 1
            if self.failures > 0:
                self.failures -= 1
                raise ConnectionError("database is locked")
        return await super().save_messages(messages)


class FailingMemoryRepository(InMemoryChatRepository):
    async def save_conversation_memory(self, chat_id, item) -> None:
        raise RuntimeError("memory table unavailable")
