"""Agent runner: executes a persona against a provider and streams raw events.

The runner plays the role of an agent SDK. One call to
:meth:`AgentRunner.run_streamed` starts a background task that loops
model call -> tool calls -> model call until the model answers without
calling tools. Hand-offs are exposed to the model as ``transfer_to_<id>``
tools; taking one swaps the active persona for the following steps.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from ..agents.persona import AgentPersona, PersonaContext
from ..agents.registry import PersonaRegistry
from ..providers.base import ChatProvider
from ..providers.types import FunctionCall, FunctionResponse, GenerationConfig, Message, ToolSchema
from ..tools.base import ToolContext
from ..tools.registry import ToolRegistry
from .events import (
    HANDOFF_OCCURRED,
    HANDOFF_REQUESTED,
    TOOL_CALLED,
    TOOL_OUTPUT,
    AgentRef,
    AgentUpdatedStreamEvent,
    HandoffItem,
    RunItemStreamEvent,
    ToolCallItem,
    ToolOutputItem,
    text_delta_event,
)

logger = logging.getLogger(__name__)

_END = object()


class MaxStepsExceeded(RuntimeError):
    """The model kept calling tools past the step budget."""


@dataclass
class RunContext:
    """Per-run inputs that are not part of the user message itself."""

    chat_id: str
    user_id: str
    user_type: str = "regular"
    memory_context: str = ""
    history: List[Message] = field(default_factory=list)
    previous_persona_id: Optional[str] = None


class RunResultStreaming:
    """Handle on a streaming run.

    ``stream_events()`` yields raw events exactly once, in production order.
    If the run raised, the exception is re-raised after the last event.
    ``final_output`` is set when the run completes normally.
    """

    def __init__(self, run_id: str, starting_persona: AgentPersona) -> None:
        self.run_id = run_id
        self.current_persona = starting_persona
        self.final_output: Optional[str] = None
        self.is_complete = False
        self.cancelled = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._exception: Optional[BaseException] = None
        self._consumed = False

    def _emit(self, event: Any) -> None:
        self._queue.put_nowait(event)

    def _finish(self, exception: Optional[BaseException] = None) -> None:
        self._exception = exception
        self.is_complete = True
        self._queue.put_nowait(_END)

    async def stream_events(self) -> AsyncIterator[Any]:
        if self._consumed:
            raise RuntimeError("stream_events() can only be consumed once")
        self._consumed = True
        while True:
            event = await self._queue.get()
            if event is _END:
                break
            yield event
        if self._exception is not None:
            raise self._exception

    async def wait_complete(self) -> None:
        """Wait for the background task without propagating its outcome."""
        if self._task is not None:
            await asyncio.wait({self._task})

    def cancel(self) -> None:
        """Abort the run. The event stream ends after whatever was already queued."""
        if self.is_complete:
            return
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        # A task cancelled before its first step never reaches _finish().
        self._queue.put_nowait(_END)


class AgentRunner:
    """Executes personas with tools and hand-offs against a chat provider."""

    def __init__(
        self,
        registry: PersonaRegistry,
        provider: ChatProvider,
        tools: ToolRegistry,
        max_steps: int = 8,
        max_tokens: int = 2048,
        use_persona_models: bool = True,
    ) -> None:
        self.registry = registry
        self.provider = provider
        self.tools = tools
        self.max_steps = max_steps
        self.max_tokens = max_tokens
        self.use_persona_models = use_persona_models
        # Only providers that announce it get snapshot deltas trimmed.
        self.cumulative_text = bool(getattr(provider, "cumulative_text", False))

    def run_streamed(
        self,
        persona: AgentPersona,
        agent_input: str,
        context: RunContext,
        run_id: Optional[str] = None,
    ) -> RunResultStreaming:
        """Start a run in the background and return its streaming handle."""
        result = RunResultStreaming(run_id or f"run_{uuid.uuid4().hex[:10]}", persona)
        result._task = asyncio.create_task(self._run(result, persona, agent_input, context))
        return result

    async def _run(
        self,
        result: RunResultStreaming,
        persona: AgentPersona,
        agent_input: str,
        context: RunContext,
    ) -> None:
        try:
            await self._loop(result, persona, agent_input, context)
        except asyncio.CancelledError:
            logger.info("run_cancelled run_id=%s persona=%s", result.run_id, result.current_persona.id)
            result._finish()
            raise
        except Exception as exc:
            logger.warning("run_failed run_id=%s error=%s", result.run_id, exc)
            result._finish(exc)
        else:
            result._finish()

    async def _loop(
        self,
        result: RunResultStreaming,
        persona: AgentPersona,
        agent_input: str,
        context: RunContext,
    ) -> None:
        messages: List[Message] = list(context.history) + [Message.user(agent_input)]
        current = persona
        previous = self.registry.find_persona(context.previous_persona_id)
        if previous is not None and previous.id == current.id:
            previous = None
        instructions = current.render_instructions(self._persona_context(context, previous))
        result._emit(AgentUpdatedStreamEvent(new_agent=AgentRef(id=current.id, name=current.name)))

        for step in range(1, self.max_steps + 1):
            start = time.perf_counter()
            text, calls = await self._stream_step(result, current, messages, instructions)
            logger.debug(
                "run_step run_id=%s step=%d persona=%s calls=%d duration_ms=%.2f",
                result.run_id,
                step,
                current.id,
                len(calls),
                (time.perf_counter() - start) * 1000,
            )
            if not calls:
                result.final_output = text.strip()
                return

            messages.append(Message.assistant(text, calls))
            responses, target = await self._execute_calls(result, current, calls, context)
            messages.append(Message.tool_results(responses))

            if target is not None:
                result._emit(AgentUpdatedStreamEvent(new_agent=AgentRef(id=target.id, name=target.name)))
                result._emit(RunItemStreamEvent(name=HANDOFF_OCCURRED, item=HandoffItem(current.id, target.id)))
                previous, current = current, target
                result.current_persona = current
                instructions = current.render_instructions(self._persona_context(context, previous))

        raise MaxStepsExceeded(f"Run exceeded {self.max_steps} steps")

    def _persona_context(self, context: RunContext, previous: Optional[AgentPersona]) -> PersonaContext:
        return PersonaContext(
            memory_context=context.memory_context,
            previous_persona_id=previous.id if previous else None,
            previous_persona_name=previous.name if previous else None,
            user_type=context.user_type,
        )

    def _tool_schemas(self, persona: AgentPersona) -> List[ToolSchema]:
        schemas = self.tools.schemas_for(persona.tools)
        for target_id in persona.handoffs:
            target = self.registry.get_persona(target_id)
            schemas.append(
                ToolSchema(
                    name=target.handoff_tool_name(),
                    description=f"Transfer the conversation to the {target.name}. {target.description}",
                    parameters={
                        "type": "object",
                        "properties": {"reason": {"type": "string", "description": "Why the transfer helps"}},
                        "required": [],
                    },
                )
            )
        return schemas

    async def _stream_step(
        self,
        result: RunResultStreaming,
        persona: AgentPersona,
        messages: List[Message],
        instructions: str,
    ) -> Tuple[str, List[FunctionCall]]:
        """Stream one model call, emitting text deltas and collecting tool calls."""
        config = GenerationConfig(
            system_prompt=instructions,
            max_tokens=self.max_tokens,
            temperature=persona.temperature,
            model=persona.model if self.use_persona_models else None,
        )
        text = ""
        calls: Dict[str, FunctionCall] = {}
        order: List[str] = []
        arg_buffers: Dict[str, str] = {}
        last_key: Optional[str] = None

        async for delta in self.provider.generate_stream(list(messages), self._tool_schemas(persona), config):
            if delta.text:
                piece = _normalize_text_delta(text, delta.text) if self.cumulative_text else delta.text
                if piece:
                    text += piece
                    result._emit(text_delta_event(piece))

            if delta.function_call_start:
                key = _call_key(delta.function_call_start.id or delta.function_call_id, delta.function_call_index)
                key = key or f"stream:{len(order)}"
                if key not in calls:
                    calls[key] = FunctionCall(
                        name=delta.function_call_start.name,
                        arguments={},
                        id=delta.function_call_start.id or delta.function_call_id,
                    )
                    order.append(key)
                arg_buffers.setdefault(key, "")
                last_key = key

            if delta.function_call_delta:
                key = _call_key(delta.function_call_id, delta.function_call_index) or last_key
                if key is None or key not in calls:
                    logger.debug("Dropping argument chunk for unknown call key=%s", key)
                    continue
                arg_buffers[key] = arg_buffers.get(key, "") + delta.function_call_delta
                last_key = key

        function_calls: List[FunctionCall] = []
        for key in order:
            call = calls[key]
            call.arguments = _parse_arguments(arg_buffers.get(key, ""))
            function_calls.append(call)
        return text, function_calls

    async def _execute_calls(
        self,
        result: RunResultStreaming,
        persona: AgentPersona,
        calls: List[FunctionCall],
        context: RunContext,
    ) -> Tuple[List[FunctionResponse], Optional[AgentPersona]]:
        responses: List[FunctionResponse] = []
        target: Optional[AgentPersona] = None
        tool_context = ToolContext(
            chat_id=context.chat_id,
            user_id=context.user_id,
            user_type=context.user_type,
            persona_id=persona.id,
        )

        for call in calls:
            handoff = self.registry.find_by_handoff_tool(call.name)
            if handoff is not None and handoff.id in persona.handoffs:
                if target is None:
                    target = handoff
                    result._emit(
                        RunItemStreamEvent(
                            name=HANDOFF_REQUESTED,
                            item=HandoffItem(persona.id, handoff.id, call_id=call.id),
                        )
                    )
                    payload: Dict[str, Any] = {"assistant": handoff.name, "transferred": True}
                else:
                    payload = {"success": False, "error": "Only one hand-off per step is allowed"}
                responses.append(FunctionResponse(name=call.name, response=payload, call_id=call.id))
                continue

            result._emit(
                RunItemStreamEvent(
                    name=TOOL_CALLED,
                    item=ToolCallItem(name=call.name, arguments=dict(call.arguments), call_id=call.id),
                )
            )
            tool_result = await self.tools.execute(call.name, call.arguments, tool_context)
            payload = tool_result.to_payload()
            result._emit(
                RunItemStreamEvent(
                    name=TOOL_OUTPUT,
                    item=ToolOutputItem(name=call.name, output=payload, call_id=call.id),
                )
            )
            responses.append(FunctionResponse(name=call.name, response=payload, call_id=call.id))

        return responses, target


def _call_key(call_id: Optional[str], index: Optional[int]) -> Optional[str]:
    if call_id:
        return f"id:{call_id}"
    if index is not None:
        return f"idx:{index}"
    return None


def _normalize_text_delta(accumulated: str, incoming: str) -> str:
    """Trim a snapshot delta that repeats the full text so far."""
    if accumulated and len(incoming) > len(accumulated) and incoming.startswith(accumulated):
        return incoming[len(accumulated):]
    return incoming


def _parse_arguments(raw: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %.80s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}
