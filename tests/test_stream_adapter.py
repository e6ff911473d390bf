"""Tests for StreamRun: ordering, terminal events, correlation ids, timeouts and cancellation."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from career_agent.agents import HandoffState, build_default_registry
from career_agent.runtime.events import (
    TOOL_CALLED,
    TOOL_OUTPUT,
    AgentRef,
    AgentUpdatedStreamEvent,
    RawResponseEvent,
    RunItemStreamEvent,
    ToolCallItem,
    ToolOutputItem,
    text_delta_event,
)
from career_agent.runtime.runner import RunContext
from career_agent.streaming import RunState, StreamAdapter
from career_agent.streaming.events import is_terminal

from fakes import FakeRunner, FakeRunResult


async def _collect(run) -> List:
    return [event async for event in run.events()]


def _start(runner, persona_id="triage", handoff_state=None, **kwargs):
    registry = build_default_registry()
    adapter = StreamAdapter(runner, registry)
    state = handoff_state or HandoffState(persona_id)
    run = adapter.start(
        run_id="run_1",
        message_id="msg_1",
        persona=registry.get_persona(persona_id),
        agent_input="hello",
        context=RunContext(chat_id="chat_1", user_id="u1"),
        handoff_state=state,
        **kwargs,
    )
    return run, state


def _types(events) -> List[str]:
    return [event.type for event in events]


class TestStreamOrdering:
    """Event order and the single-terminal-event rule."""

    @pytest.mark.asyncio
    async def test_text_run_ends_with_single_finish(self):
        runner = FakeRunner(FakeRunResult([text_delta_event("Hel"), text_delta_event("lo")], final_output="Hello"))
        run, _ = _start(runner)
        events = await _collect(run)

        assert _types(events) == ["data", "text-delta", "text-delta", "finish"]
        assert events[0].kind == "start"
        assert events[0].data["personaId"] == "triage"
        assert [event.delta for event in events[1:3]] == ["Hel", "lo"]
        assert events[-1].finish_reason == "stop"
        assert events[-1].message_id == "msg_1"
        assert sum(1 for event in events if is_terminal(event)) == 1
        assert run.outcome.status == RunState.FINISHED
        assert run.outcome.final_text == "Hello"
        assert not run.outcome.used_fallback_text

    @pytest.mark.asyncio
    async def test_missing_final_output_falls_back_to_deltas(self):
        runner = FakeRunner(FakeRunResult([text_delta_event("Par"), text_delta_event("tial")], final_output=None))
        run, _ = _start(runner)
        await _collect(run)
        assert run.outcome.final_text == "Partial"
        assert run.outcome.used_fallback_text

    @pytest.mark.asyncio
    async def test_error_mid_stream_ends_with_error_only(self):
        runner = FakeRunner(FakeRunResult([text_delta_event("Hi")], error=RuntimeError("provider exploded")))
        run, _ = _start(runner)
        events = await _collect(run)

        assert _types(events) == ["data", "text-delta", "error"]
        assert events[-1].kind == "stream_failed"
        assert "provider exploded" not in events[-1].message
        assert run.outcome.status == RunState.FAILED
        assert run.outcome.partial_text == "Hi"

    @pytest.mark.asyncio
    async def test_runner_that_cannot_start_yields_error(self):
        class BrokenRunner:
            def run_streamed(self, *args, **kwargs):
                raise ValueError("no provider")

        run, _ = _start(BrokenRunner())
        events = await _collect(run)
        assert _types(events) == ["data", "error"]
        assert run.outcome.error_kind.value == "stream_failed"

    @pytest.mark.asyncio
    async def test_events_can_only_be_consumed_once(self):
        run, _ = _start(FakeRunner(FakeRunResult([], final_output="ok")))
        await _collect(run)
        with pytest.raises(RuntimeError):
            await _collect(run)

    @pytest.mark.asyncio
    async def test_unknown_events_are_dropped(self):
        runner = FakeRunner(
            FakeRunResult(
                [
                    {"type": "mystery_event"},
                    RawResponseEvent(data={"type": "response.created"}),
                    RunItemStreamEvent(name="reasoning_item", item={}),
                    text_delta_event("ok"),
                ],
                final_output="ok",
            )
        )
        run, _ = _start(runner)
        events = await _collect(run)
        assert _types(events) == ["data", "text-delta", "finish"]
        assert run.observer.stats.dropped_events == 3


class TestToolEvents:
    """Tool call and result translation with correlation ids."""

    @pytest.mark.asyncio
    async def test_tool_call_and_result_share_given_id(self):
        runner = FakeRunner(
            FakeRunResult(
                [
                    RunItemStreamEvent(
                        name=TOOL_CALLED,
                        item=ToolCallItem(name="analyze_resume", arguments={"resume_text": "x"}, call_id="c1"),
                    ),
                    RunItemStreamEvent(
                        name=TOOL_OUTPUT,
                        item=ToolOutputItem(name="analyze_resume", output={"success": True}, call_id="c1"),
                    ),
                ],
                final_output="done",
            )
        )
        run, _ = _start(runner, persona_id="resume")
        events = await _collect(run)

        call, result = events[1], events[2]
        assert call.type == "tool-call"
        assert call.tool_call_id == "c1"
        assert call.args == {"resume_text": "x"}
        assert result.type == "tool-result"
        assert result.tool_call_id == "c1"

    @pytest.mark.asyncio
    async def test_missing_ids_are_generated_and_matched_in_order(self):
        runner = FakeRunner(
            FakeRunResult(
                [
                    RunItemStreamEvent(name=TOOL_CALLED, item={"name": "request_suggestions", "arguments": '{"a": 1}'}),
                    RunItemStreamEvent(name=TOOL_CALLED, item={"name": "request_suggestions", "arguments": "not json"}),
                    RunItemStreamEvent(name=TOOL_OUTPUT, item={"name": "request_suggestions", "output": {"n": 1}}),
                    RunItemStreamEvent(name=TOOL_OUTPUT, item={"name": "request_suggestions", "output": {"n": 2}}),
                ],
                final_output="done",
            )
        )
        run, _ = _start(runner)
        events = await _collect(run)

        first_call, second_call, first_result, second_result = events[1:5]
        assert first_call.tool_call_id.startswith("call_")
        assert first_call.tool_call_id != second_call.tool_call_id
        assert first_call.args == {"a": 1}
        assert second_call.args == {"raw": "not json"}
        assert first_result.tool_call_id == first_call.tool_call_id
        assert second_result.tool_call_id == second_call.tool_call_id

    @pytest.mark.asyncio
    async def test_document_output_emits_data_event_and_side_effect(self):
        output = {"success": True, "action": "create_document", "title": "Resume", "url": "/blobs/a/resume.md"}
        runner = FakeRunner(
            FakeRunResult(
                [
                    RunItemStreamEvent(name=TOOL_CALLED, item=ToolCallItem(name="create_document", call_id="d1")),
                    RunItemStreamEvent(name=TOOL_OUTPUT, item=ToolOutputItem("create_document", output, "d1")),
                ],
                final_output="Created.",
            )
        )
        run, _ = _start(runner, persona_id="resume")
        events = await _collect(run)

        assert _types(events) == ["data", "tool-call", "tool-result", "data", "finish"]
        assert events[3].kind == "document"
        assert events[3].data["url"] == "/blobs/a/resume.md"
        assert run.outcome.side_effects[0]["toolCallId"] == "d1"

    @pytest.mark.asyncio
    async def test_failed_document_output_has_no_side_effect(self):
        output = {"success": False, "action": "create_document", "error": "boom"}
        runner = FakeRunner(
            FakeRunResult(
                [RunItemStreamEvent(name=TOOL_OUTPUT, item=ToolOutputItem("create_document", output, "d1"))],
                final_output="Sorry.",
            )
        )
        run, _ = _start(runner, persona_id="resume")
        events = await _collect(run)
        assert _types(events) == ["data", "tool-result", "finish"]
        assert run.outcome.side_effects == []


class TestAgentUpdates:
    """Persona changes inside a run."""

    @pytest.mark.asyncio
    async def test_handoff_is_staged_before_agent_update(self):
        state = HandoffState("triage")
        seen_current = []

        runner = FakeRunner(
            FakeRunResult(
                [
                    AgentUpdatedStreamEvent(new_agent=AgentRef(id="triage", name="Career Counselor")),
                    AgentUpdatedStreamEvent(new_agent=AgentRef(id="resume", name="Resume Expert")),
                    text_delta_event("Resume here"),
                ],
                final_output="Resume here",
            )
        )
        run, _ = _start(runner, handoff_state=state)
        events = []
        async for event in run.events():
            if event.type == "agent-update":
                seen_current.append(state.current_persona_id)
            events.append(event)

        assert _types(events) == ["data", "agent-update", "text-delta", "finish"]
        assert events[1].persona_id == "resume"
        assert events[1].previous_persona_id == "triage"
        assert seen_current == ["resume"]
        assert state.active_persona_id == "triage"
        assert run.outcome.final_persona_id == "resume"
        assert run.outcome.handoffs == ["resume"]

    @pytest.mark.asyncio
    async def test_agent_resolved_by_name(self):
        runner = FakeRunner(
            FakeRunResult([AgentUpdatedStreamEvent(new_agent={"name": "Interview Coach"})], final_output="ok")
        )
        run, state = _start(runner)
        events = await _collect(run)
        assert events[1].persona_id == "interview"
        assert state.current_persona_id == "interview"

    @pytest.mark.asyncio
    async def test_routed_persona_announced_first(self):
        runner = FakeRunner(FakeRunResult([], final_output="ok"))
        run, _ = _start(runner, persona_id="resume", routed_from="triage")
        events = await _collect(run)
        assert _types(events) == ["data", "agent-update", "finish"]
        assert events[1].reason == "routed"


class TestDeadlineAndCancel:
    """Timeouts and user-initiated stops."""

    @pytest.mark.asyncio
    async def test_deadline_produces_timeout_error(self):
        fake = FakeRunResult([text_delta_event("slow")], hang=True)
        loop = asyncio.get_running_loop()
        run, _ = _start(FakeRunner(fake), deadline=loop.time() + 0.05)
        events = await _collect(run)

        assert _types(events) == ["data", "text-delta", "error"]
        assert events[-1].kind == "timeout"
        assert fake.cancelled
        assert run.outcome.status == RunState.FAILED
        assert run.outcome.partial_text == "slow"

    @pytest.mark.asyncio
    async def test_cancel_finishes_with_stopped(self):
        cancel_event = asyncio.Event()
        fake = FakeRunResult([text_delta_event("a"), text_delta_event("b")], hang=True)
        run, _ = _start(FakeRunner(fake), cancel_event=cancel_event)

        events = []
        async for event in run.events():
            events.append(event)
            if event.type == "text-delta" and event.delta == "b":
                cancel_event.set()

        assert _types(events) == ["data", "text-delta", "text-delta", "finish"]
        assert events[-1].finish_reason == "stopped"
        assert fake.cancelled
        assert run.outcome.status == RunState.CANCELLED
        assert run.outcome.partial_text == "ab"

    @pytest.mark.asyncio
    async def test_stop_drops_events_already_buffered(self):
        cancel_event = asyncio.Event()
        fake = FakeRunResult(
            [text_delta_event("a"), text_delta_event("b"), text_delta_event("c")],
            final_output="abc",
        )
        run, _ = _start(FakeRunner(fake), cancel_event=cancel_event)

        events = []
        async for event in run.events():
            events.append(event)
            if event.type == "text-delta":
                cancel_event.set()

        assert _types(events) == ["data", "text-delta", "finish"]
        assert events[-1].finish_reason == "stopped"
        assert fake.cancelled
        assert run.outcome.status == RunState.CANCELLED
        assert run.outcome.partial_text == "a"

    @pytest.mark.asyncio
    async def test_stop_wins_when_next_event_is_ready_in_same_tick(self):
        cancel_event = asyncio.Event()
        gate = asyncio.Event()
        fake = FakeRunResult([text_delta_event("late")], final_output="late", gate=gate)
        run, _ = _start(FakeRunner(fake), cancel_event=cancel_event)

        task = asyncio.create_task(_collect(run))
        for _ in range(5):
            await asyncio.sleep(0)
        cancel_event.set()
        gate.set()
        events = await task

        assert _types(events) == ["data", "finish"]
        assert events[-1].finish_reason == "stopped"
        assert run.outcome.status == RunState.CANCELLED
        assert run.outcome.partial_text == ""

    @pytest.mark.asyncio
    async def test_stop_after_last_event_still_cancels(self):
        cancel_event = asyncio.Event()
        fake = FakeRunResult([text_delta_event("done")], final_output="done")
        run, _ = _start(FakeRunner(fake), cancel_event=cancel_event)

        events = []
        async for event in run.events():
            events.append(event)
            if event.type == "text-delta":
                cancel_event.set()

        assert events[-1].type == "finish"
        assert events[-1].finish_reason == "stopped"
        assert run.outcome.status == RunState.CANCELLED
        assert run.outcome.partial_text == "done"
