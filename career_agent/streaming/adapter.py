"""Stream adapter: turns a runner's raw event stream into ordered client events."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

from ..agents.handoff import HandoffState
from ..agents.persona import AgentPersona
from ..agents.registry import PersonaRegistry
from ..errors import ErrorKind, toast_for
from ..observability import RunObserver
from ..runtime.events import (
    AGENT_UPDATED_EVENT,
    RAW_RESPONSE_EVENT,
    RUN_ITEM_EVENT,
    TEXT_DELTA_TYPE,
    TOOL_CALLED,
    TOOL_OUTPUT,
)
from ..runtime.runner import AgentRunner, RunContext, RunResultStreaming
from .events import (
    AgentUpdateEvent,
    DataEvent,
    ErrorEvent,
    FinishEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
)

logger = logging.getLogger(__name__)

DOCUMENT_ACTIONS = ("create_document", "update_document")


class RunState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATES = frozenset({RunState.FINISHED, RunState.FAILED, RunState.CANCELLED})


@dataclass
class RunOutcome:
    """What a run produced, handed to finalization."""

    run_id: str
    message_id: str
    status: RunState
    persona_id: str
    final_persona_id: str
    final_text: str = ""
    partial_text: str = ""
    used_fallback_text: bool = False
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    handoffs: List[str] = field(default_factory=list)
    side_effects: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.final_text if self.status == RunState.FINISHED else self.partial_text


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def new_correlation_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


class StreamRun:
    """One invocation of a persona: ``idle -> streaming -> finished | failed | cancelled``.

    :meth:`events` can be iterated once. It yields a leading ``data`` start
    event, then translated run events, and ends with exactly one ``finish``
    or ``error`` event. :attr:`outcome` is set before that terminal event is
    yielded.
    """

    def __init__(
        self,
        runner: AgentRunner,
        registry: PersonaRegistry,
        *,
        run_id: str,
        message_id: str,
        persona: AgentPersona,
        agent_input: str,
        context: RunContext,
        handoff_state: HandoffState,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
        routed_from: Optional[str] = None,
        observer: Optional[RunObserver] = None,
    ) -> None:
        self.runner = runner
        self.registry = registry
        self.run_id = run_id
        self.message_id = message_id
        self.persona = persona
        self.agent_input = agent_input
        self.context = context
        self.handoff_state = handoff_state
        self.cancel_event = cancel_event
        self.deadline = deadline
        self.routed_from = routed_from
        self.observer = observer or RunObserver(run_id, chat_id=context.chat_id)

        self.state = RunState.IDLE
        self.outcome: Optional[RunOutcome] = None
        self._deltas: List[str] = []
        self._handoffs: List[str] = []
        self._side_effects: List[Dict[str, Any]] = []
        self._pending_calls: Dict[str, Deque[str]] = defaultdict(deque)
        self._open_call_ids: set = set()

    # -- public ------------------------------------------------------------

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self.state != RunState.IDLE:
            raise RuntimeError("StreamRun.events() can only be consumed once")
        self.state = RunState.STREAMING
        self.observer.log_run_start(self.persona.id, self.persona.model)

        yield DataEvent(
            kind="start",
            data={
                "runId": self.run_id,
                "messageId": self.message_id,
                "personaId": self.persona.id,
                "personaName": self.persona.name,
            },
        )
        if self.routed_from and self.routed_from != self.persona.id:
            self._handoffs.append(self.persona.id)
            self.observer.log_handoff(self.routed_from, self.persona.id, "routed")
            yield AgentUpdateEvent(
                persona_id=self.persona.id,
                persona_name=self.persona.name,
                previous_persona_id=self.routed_from,
                reason="routed",
            )

        try:
            result = self.runner.run_streamed(self.persona, self.agent_input, self.context, run_id=self.run_id)
        except Exception as exc:
            yield self._fail(ErrorKind.STREAM_FAILED, f"Run could not start: {exc}")
            return

        async for event in self._pump(result):
            yield event

    # -- internals ---------------------------------------------------------

    async def _pump(self, result: RunResultStreaming) -> AsyncIterator[StreamEvent]:
        iterator = result.stream_events().__aiter__()
        cancel_waiter = asyncio.ensure_future(self.cancel_event.wait()) if self.cancel_event else None
        try:
            while True:
                if self._stop_requested():
                    result.cancel()
                    yield self._cancelled()
                    return

                next_event = asyncio.ensure_future(iterator.__anext__())
                waiters = {next_event} if cancel_waiter is None else {next_event, cancel_waiter}
                done, _ = await asyncio.wait(waiters, timeout=self._remaining(), return_when=asyncio.FIRST_COMPLETED)

                # A stop wins over an event that became ready in the same tick.
                if self._stop_requested() or next_event not in done:
                    await self._discard(next_event)
                    result.cancel()
                    if self._stop_requested():
                        yield self._cancelled()
                    else:
                        yield self._fail(ErrorKind.TIMEOUT, "Turn exceeded its time budget")
                    return

                try:
                    raw = next_event.result()
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    yield self._fail(ErrorKind.STREAM_FAILED, str(exc) or exc.__class__.__name__)
                    return

                for event in self._translate(raw):
                    yield event
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if self._stop_requested():
            result.cancel()
            yield self._cancelled()
            return

        try:
            await asyncio.wait_for(result.wait_complete(), timeout=self._remaining())
        except asyncio.TimeoutError:
            result.cancel()
            yield self._fail(ErrorKind.TIMEOUT, "Turn exceeded its time budget while finishing")
            return

        if self._stop_requested():
            yield self._cancelled()
            return

        final_text = result.final_output
        used_fallback = False
        if not final_text:
            final_text = "".join(self._deltas)
            used_fallback = True
            logger.info("final_output_missing run_id=%s using_delta_text=%d chars", self.run_id, len(final_text))

        self.state = RunState.FINISHED
        self.outcome = self._build_outcome(RunState.FINISHED, final_text=final_text, used_fallback=used_fallback)
        self.observer.log_run_end(self.state.value)
        yield FinishEvent(message_id=self.message_id, finish_reason="stop")

    def _stop_requested(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    @staticmethod
    async def _discard(pending: "asyncio.Future[Any]") -> None:
        if not pending.done():
            pending.cancel()
            await asyncio.wait({pending})
        if not pending.cancelled():
            # Retrieve so a dropped StopAsyncIteration or error is not reported as unhandled.
            pending.exception()

    def _remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(self.deadline - asyncio.get_running_loop().time(), 0.0)

    def _translate(self, raw: Any) -> List[StreamEvent]:
        event_type = _field(raw, "type")

        if event_type == RAW_RESPONSE_EVENT:
            data = _field(raw, "data")
            delta = _field(data, "delta")
            if _field(data, "type") == TEXT_DELTA_TYPE and isinstance(delta, str) and delta:
                self._deltas.append(delta)
                self.observer.log_text_delta(delta)
                return [TextDeltaEvent(delta=delta)]
            self.observer.log_dropped(f"{event_type}:{_field(data, 'type')}")
            return []

        if event_type == RUN_ITEM_EVENT:
            name = _field(raw, "name")
            item = _field(raw, "item")
            if name == TOOL_CALLED:
                return self._tool_called(item)
            if name == TOOL_OUTPUT:
                return self._tool_output(item)
            self.observer.log_dropped(f"{event_type}:{name}")
            return []

        if event_type == AGENT_UPDATED_EVENT:
            return self._agent_updated(_field(raw, "new_agent"))

        self.observer.log_dropped(str(event_type))
        return []

    def _tool_called(self, item: Any) -> List[StreamEvent]:
        tool_name = _field(item, "name")
        if not isinstance(tool_name, str) or not tool_name:
            self.observer.log_dropped("tool_called:malformed")
            return []
        call_id = _field(item, "call_id")
        if not isinstance(call_id, str) or not call_id:
            call_id = new_correlation_id()
        self._pending_calls[tool_name].append(call_id)
        self._open_call_ids.add(call_id)

        args = _field(item, "arguments")
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError:
                args = {"raw": args}
        if not isinstance(args, dict):
            args = {}
        self.observer.log_tool_call(tool_name, call_id, args)
        return [ToolCallEvent(tool_call_id=call_id, tool_name=tool_name, args=_jsonable(args))]

    def _tool_output(self, item: Any) -> List[StreamEvent]:
        tool_name = _field(item, "name")
        if not isinstance(tool_name, str) or not tool_name:
            self.observer.log_dropped("tool_output:malformed")
            return []
        call_id = _field(item, "call_id")
        pending = self._pending_calls[tool_name]
        if isinstance(call_id, str) and call_id:
            if call_id in pending:
                pending.remove(call_id)
        elif pending:
            call_id = pending.popleft()
        else:
            call_id = new_correlation_id()
        self._open_call_ids.discard(call_id)

        output = _jsonable(_field(item, "output"))
        success = not (isinstance(output, dict) and output.get("success") is False)
        self.observer.log_tool_result(tool_name, call_id, success)
        events: List[StreamEvent] = [ToolResultEvent(tool_call_id=call_id, tool_name=tool_name, result=output)]

        if isinstance(output, dict) and output.get("action") in DOCUMENT_ACTIONS and success:
            effect = dict(output)
            effect["toolCallId"] = call_id
            self._side_effects.append(effect)
            events.append(DataEvent(kind="document", data=effect))
        return events

    def _agent_updated(self, agent: Any) -> List[StreamEvent]:
        persona = self.registry.find_persona(_field(agent, "id"))
        if persona is None:
            name = _field(agent, "name")
            persona = next((p for p in self.registry.list_personas() if p.name == name), None)
        if persona is None:
            self.observer.log_dropped("agent_updated:unknown_persona")
            return []

        previous = self.handoff_state.current_persona_id
        # Staging happens before the event is yielded, so every later delta is
        # attributed to the new persona.
        if not self.handoff_state.stage(persona.id):
            return []
        self._handoffs.append(persona.id)
        self.observer.log_handoff(previous, persona.id, "agent_update")
        return [
            AgentUpdateEvent(
                persona_id=persona.id,
                persona_name=persona.name,
                previous_persona_id=previous,
                reason="handoff",
            )
        ]

    def _fail(self, kind: ErrorKind, message: str) -> ErrorEvent:
        self.state = RunState.FAILED
        self.outcome = self._build_outcome(RunState.FAILED, error_kind=kind, error_message=message)
        self.observer.log_error(kind.value, message)
        self.observer.log_run_end(self.state.value)
        return ErrorEvent(kind=kind.value, message=toast_for(kind))

    def _cancelled(self) -> FinishEvent:
        self.state = RunState.CANCELLED
        self.outcome = self._build_outcome(RunState.CANCELLED)
        self.observer.log_run_end(self.state.value)
        return FinishEvent(message_id=self.message_id, finish_reason="stopped")

    def _build_outcome(
        self,
        status: RunState,
        final_text: str = "",
        used_fallback: bool = False,
        error_kind: Optional[ErrorKind] = None,
        error_message: Optional[str] = None,
    ) -> RunOutcome:
        return RunOutcome(
            run_id=self.run_id,
            message_id=self.message_id,
            status=status,
            persona_id=self.persona.id,
            final_persona_id=self.handoff_state.current_persona_id,
            final_text=final_text,
            partial_text="".join(self._deltas),
            used_fallback_text=used_fallback,
            error_kind=error_kind,
            error_message=error_message,
            handoffs=list(self._handoffs),
            side_effects=list(self._side_effects),
        )


class StreamAdapter:
    """Factory for :class:`StreamRun` bound to a runner and registry."""

    def __init__(self, runner: AgentRunner, registry: PersonaRegistry) -> None:
        self.runner = runner
        self.registry = registry

    def start(
        self,
        *,
        run_id: str,
        message_id: str,
        persona: AgentPersona,
        agent_input: str,
        context: RunContext,
        handoff_state: HandoffState,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
        routed_from: Optional[str] = None,
    ) -> StreamRun:
        return StreamRun(
            self.runner,
            self.registry,
            run_id=run_id,
            message_id=message_id,
            persona=persona,
            agent_input=agent_input,
            context=context,
            handoff_state=handoff_state,
            cancel_event=cancel_event,
            deadline=deadline,
            routed_from=routed_from,
        )
